"""Sufficient statistics of an alignment: distinct column tuples with counts.

A tuple is the pattern of characters across all sequences in a window of
``tuple_size`` consecutive columns ending at the column it describes.
Positions to the left of column 0 read as gaps. An ordered store also keeps
the column -> tuple index, so the explicit alignment can be rebuilt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from phylohmm.errors import ConfigError, InputFormatError, UnorderedAlignment
from phylohmm.types.alignment import (
    Alignment,
    DEFAULT_ALPHABET,
    DEFAULT_MISSING,
    GAP_CHAR,
)

logger = logging.getLogger(__name__)

Pattern = Tuple[str, ...]

DEFAULT_BLOCK_NAME = "MSA"


@dataclass(frozen=True)
class Block:
    """An independent alignment segment inside a (possibly pooled) store.

    ``start`` and ``end`` are 0-based, half-open positions in the store's
    column order; ``idx_offset`` is the segment's offset in its own source.
    """

    name: str
    start: int
    end: int
    idx_offset: int = 0

    @property
    def length(self) -> int:
        return self.end - self.start

    def shifted(self, delta: int) -> "Block":
        return Block(self.name, self.start + delta, self.end + delta, self.idx_offset)


class TupleStore:
    """Counted distinct column tuples of an alignment."""

    def __init__(
        self,
        names: Sequence[str],
        patterns: Sequence[Pattern],
        counts: Sequence[int],
        tuple_size: int = 1,
        tuple_idx: Optional[np.ndarray] = None,
        categories: Optional[np.ndarray] = None,
        cat_counts: Optional[np.ndarray] = None,
        blocks: Optional[Sequence[Block]] = None,
        alphabet: str = DEFAULT_ALPHABET,
        missing: str = DEFAULT_MISSING,
        informative: Optional[List[bool]] = None,
    ) -> None:
        if tuple_size < 1:
            raise ConfigError(f"tuple_size must be >= 1, got {tuple_size}")
        if len(patterns) != len(counts):
            raise InputFormatError("patterns and counts must have the same length")
        for pattern in patterns:
            if len(pattern) != tuple_size or any(len(col) != len(names) for col in pattern):
                raise InputFormatError(
                    f"tuple pattern does not match {len(names)} sequences x {tuple_size}"
                )

        self.names: List[str] = list(names)
        self.patterns: List[Pattern] = [tuple(p) for p in patterns]
        self.counts = np.asarray(counts, dtype=int)
        self.tuple_size = tuple_size
        self.alphabet = alphabet
        self.missing = missing
        self.informative = None if informative is None else list(informative)

        self.tuple_idx: Optional[np.ndarray] = None
        if tuple_idx is not None:
            tuple_idx = np.asarray(tuple_idx, dtype=int)
            if len(tuple_idx) != int(self.counts.sum()):
                raise InputFormatError("tuple_idx length must equal the sum of counts")
            if len(tuple_idx) and (tuple_idx.min() < 0 or tuple_idx.max() >= self.ntuples):
                raise InputFormatError("tuple_idx refers to a tuple that does not exist")
            self.tuple_idx = tuple_idx

        self.categories: Optional[np.ndarray] = None
        if categories is not None:
            if self.tuple_idx is None:
                raise UnorderedAlignment("per-column categories need an ordered store")
            categories = np.asarray(categories, dtype=int)
            if categories.shape != self.tuple_idx.shape:
                raise InputFormatError("categories must have one entry per column")
            self.categories = categories

        self.cat_counts: Optional[np.ndarray] = None
        if cat_counts is not None:
            cat_counts = np.asarray(cat_counts, dtype=int)
            if cat_counts.shape[0] != self.ntuples or not np.array_equal(
                cat_counts.sum(axis=1), self.counts
            ):
                raise InputFormatError("per-category counts must sum to tuple counts")
            self.cat_counts = cat_counts

        if blocks is None:
            blocks = [Block(DEFAULT_BLOCK_NAME, 0, self.length)]
        self.blocks: List[Block] = list(blocks)

    @classmethod
    def build(
        cls,
        alignment: Alignment,
        tuple_size: int = 1,
        ordered: bool = True,
        name: str = DEFAULT_BLOCK_NAME,
    ) -> "TupleStore":
        """Compress ``alignment`` into counted tuples.

        When the alignment carries categories, per-category counts use the
        category of the right-most column of each tuple.
        """
        if tuple_size < 1:
            raise ConfigError(f"tuple_size must be >= 1, got {tuple_size}")
        columns = [alignment.column(i) for i in range(alignment.length)]
        gap_column = GAP_CHAR * alignment.nseqs
        ncats = alignment.ncats

        index: Dict[Pattern, int] = {}
        patterns: List[Pattern] = []
        counts: List[int] = []
        cat_rows: List[np.ndarray] = []
        tuple_idx = np.zeros(alignment.length, dtype=int) if ordered else None

        for i in range(alignment.length):
            pattern = tuple(
                columns[j] if j >= 0 else gap_column
                for j in range(i - tuple_size + 1, i + 1)
            )
            idx = index.get(pattern)
            if idx is None:
                idx = len(patterns)
                index[pattern] = idx
                patterns.append(pattern)
                counts.append(0)
                if ncats:
                    cat_rows.append(np.zeros(ncats, dtype=int))
            counts[idx] += 1
            if ncats:
                cat_rows[idx][alignment.categories[i]] += 1
            if tuple_idx is not None:
                tuple_idx[i] = idx

        cat_counts = None
        if ncats:
            cat_counts = np.vstack(cat_rows) if cat_rows else np.zeros((0, ncats), dtype=int)

        return cls(
            names=alignment.names,
            patterns=patterns,
            counts=counts,
            tuple_size=tuple_size,
            tuple_idx=tuple_idx,
            categories=alignment.categories if ordered else None,
            cat_counts=cat_counts,
            blocks=[Block(name, 0, alignment.length, alignment.idx_offset)],
            alphabet=alignment.alphabet,
            missing=alignment.missing,
            informative=alignment.informative,
        )

    @property
    def ntuples(self) -> int:
        return len(self.patterns)

    @property
    def nseqs(self) -> int:
        return len(self.names)

    @property
    def length(self) -> int:
        """Number of alignment columns summarized by the store."""
        return int(self.counts.sum())

    @property
    def is_ordered(self) -> bool:
        return self.tuple_idx is not None

    @property
    def ncats(self) -> int:
        return 0 if self.cat_counts is None else self.cat_counts.shape[1]

    def require_ordered(self, operation: str) -> np.ndarray:
        if self.tuple_idx is None:
            raise UnorderedAlignment(f"{operation} requires an ordered tuple store")
        return self.tuple_idx

    def char(self, tup: int, seq: int, offset: int = 0) -> str:
        """Character of sequence ``seq`` in tuple ``tup``.

        ``offset`` is 0 for the tuple's own column and negative for the
        preceding context columns.
        """
        if offset > 0 or offset <= -self.tuple_size:
            raise ValueError(
                f"offset must be in [{1 - self.tuple_size}, 0], got {offset}"
            )
        return self.patterns[tup][self.tuple_size - 1 + offset][seq]

    def column(self, tup: int) -> str:
        """Right-most column of tuple ``tup``, one character per sequence."""
        return self.patterns[tup][-1]

    def iter_block_columns(self, block: Block) -> Iterator[int]:
        tuple_idx = self.require_ordered("iterating block columns")
        for pos in range(block.start, block.end):
            yield int(tuple_idx[pos])

    def expand(self) -> Alignment:
        """Rebuild the explicit alignment from the tuples and column order."""
        tuple_idx = self.require_ordered("expanding to an explicit alignment")
        own_columns = [pattern[-1] for pattern in self.patterns]
        rows = [
            "".join(own_columns[t][seq] for t in tuple_idx) for seq in range(self.nseqs)
        ]
        return Alignment(
            names=self.names,
            rows=rows,
            alphabet=self.alphabet,
            missing=self.missing,
            categories=self.categories,
            informative=self.informative,
            idx_offset=self.blocks[0].idx_offset if len(self.blocks) == 1 else 0,
        )

    def update_categories(self, categories: Sequence[int]) -> None:
        """Attach per-column categories and recompute per-category counts."""
        tuple_idx = self.require_ordered("assigning categories")
        cats = np.asarray(categories, dtype=int)
        if cats.shape != tuple_idx.shape:
            raise InputFormatError(
                f"categories must have one entry per column ({len(tuple_idx)})"
            )
        ncats = int(cats.max()) + 1 if len(cats) else 1
        cat_counts = np.zeros((self.ntuples, ncats), dtype=int)
        np.add.at(cat_counts, (tuple_idx, cats), 1)
        self.categories = cats
        self.cat_counts = cat_counts

    def slice_by_category(self, category: int) -> "TupleStore":
        """Store of the columns whose category is ``category``.

        ``tuple_size - 1`` columns of missing data are inserted wherever two
        selected columns were not adjacent, so tuples never span a join.
        """
        self.require_ordered("slicing by category")
        if self.categories is None:
            raise InputFormatError("slicing by category requires column categories")
        source = self.expand()
        filler = self.missing[0] * self.nseqs
        columns: List[str] = []
        prev = None
        for i in np.flatnonzero(self.categories == category):
            if prev is not None and i != prev + 1:
                columns.extend([filler] * (self.tuple_size - 1))
            columns.append(source.column(int(i)))
            prev = int(i)
        if not columns:
            logger.warning("no columns of category %d", category)
        rows = ["".join(col[seq] for col in columns) for seq in range(self.nseqs)]
        sliced = Alignment(
            names=self.names,
            rows=rows,
            alphabet=self.alphabet,
            missing=self.missing,
            informative=self.informative,
        )
        return TupleStore.build(sliced, self.tuple_size, ordered=True)

    def _realigned(self, names: Sequence[str]) -> "TupleStore":
        """Copy of this store with rows placed on ``names``; absent rows are gaps."""
        unknown = [name for name in self.names if name not in names]
        if unknown:
            raise InputFormatError(f"sequence names not in target alignment: {unknown}")
        if list(names) == self.names:
            return self
        source = [self.names.index(name) if name in self.names else None for name in names]

        def _remap(col: str) -> str:
            return "".join(GAP_CHAR if s is None else col[s] for s in source)

        informative = None
        if self.informative is not None:
            informative = [True if s is None else self.informative[s] for s in source]
        return TupleStore(
            names=names,
            patterns=[tuple(_remap(col) for col in pattern) for pattern in self.patterns],
            counts=self.counts,
            tuple_size=self.tuple_size,
            tuple_idx=self.tuple_idx,
            categories=self.categories,
            cat_counts=self.cat_counts,
            blocks=self.blocks,
            alphabet=self.alphabet,
            missing=self.missing,
            informative=informative,
        )

    def concatenate(self, other: "TupleStore", name: Optional[str] = None) -> "TupleStore":
        """Append the columns of ``other`` as new block(s).

        Rows of ``other`` are placed on this store's name order; sequences
        missing from ``other`` read as gaps. Tuples keep their own context.
        """
        if other.tuple_size != self.tuple_size:
            raise InputFormatError(
                f"cannot concatenate tuple sizes {self.tuple_size} and {other.tuple_size}"
            )
        other = other._realigned(self.names)

        index: Dict[Pattern, int] = {p: i for i, p in enumerate(self.patterns)}
        patterns = list(self.patterns)
        counts = list(int(c) for c in self.counts)
        remap = np.zeros(other.ntuples, dtype=int)
        for i, pattern in enumerate(other.patterns):
            idx = index.get(pattern)
            if idx is None:
                idx = len(patterns)
                index[pattern] = idx
                patterns.append(pattern)
                counts.append(0)
            counts[idx] += int(other.counts[i])
            remap[i] = idx

        cat_counts = None
        if self.cat_counts is not None or other.cat_counts is not None:
            ncats = max(self.ncats, other.ncats)
            cat_counts = np.zeros((len(patterns), ncats), dtype=int)
            for store, rows in ((self, np.arange(self.ntuples)), (other, remap)):
                for i, row in enumerate(rows):
                    if store.cat_counts is not None:
                        cat_counts[row, : store.ncats] += store.cat_counts[i]
                    else:
                        cat_counts[row, 0] += store.counts[i]

        tuple_idx = categories = None
        if self.is_ordered and other.is_ordered:
            tuple_idx = np.concatenate([self.tuple_idx, remap[other.tuple_idx]])
            if self.categories is not None or other.categories is not None:
                categories = np.concatenate(
                    [
                        _categories_or_background(self),
                        _categories_or_background(other),
                    ]
                )

        other_blocks = [b.shifted(self.length) for b in other.blocks]
        if name is not None and len(other_blocks) == 1:
            b = other_blocks[0]
            other_blocks = [Block(name, b.start, b.end, b.idx_offset)]

        informative = None
        if self.informative is not None or other.informative is not None:
            mine = self.informative or [True] * self.nseqs
            theirs = other.informative or [True] * self.nseqs
            informative = [a and b for a, b in zip(mine, theirs)]

        return TupleStore(
            names=self.names,
            patterns=patterns,
            counts=counts,
            tuple_size=self.tuple_size,
            tuple_idx=tuple_idx,
            categories=categories,
            cat_counts=cat_counts,
            blocks=self.blocks + other_blocks,
            alphabet=self.alphabet,
            missing=self.missing,
            informative=informative,
        )

    @classmethod
    def pool(cls, named_stores: Sequence[Tuple[str, "TupleStore"]]) -> "TupleStore":
        """Pool several ordered stores into one with a block per input.

        The pooled name order is the union of the inputs' names in order of
        first appearance.
        """
        if not named_stores:
            raise InputFormatError("at least one store is required for pooling")
        block_names = [name for name, _ in named_stores]
        if len(set(block_names)) != len(block_names):
            raise InputFormatError(f"duplicate block names: {block_names}")
        names: List[str] = []
        for block_name, store in named_stores:
            store.require_ordered(f"pooling block '{block_name}'")
            names.extend(n for n in store.names if n not in names)

        first_name, first = named_stores[0]
        pooled = first._realigned(names)
        pooled = TupleStore(
            names=pooled.names,
            patterns=pooled.patterns,
            counts=pooled.counts,
            tuple_size=pooled.tuple_size,
            tuple_idx=pooled.tuple_idx,
            categories=pooled.categories,
            cat_counts=pooled.cat_counts,
            blocks=[Block(first_name, 0, first.length, first.blocks[0].idx_offset)],
            alphabet=pooled.alphabet,
            missing=pooled.missing,
            informative=pooled.informative,
        )
        for block_name, store in named_stores[1:]:
            pooled = pooled.concatenate(store, name=block_name)
        logger.info(
            "pooled %d blocks into %d tuples over %d columns",
            len(named_stores),
            pooled.ntuples,
            pooled.length,
        )
        return pooled

    def base_frequencies(self) -> np.ndarray:
        """Alphabet frequencies over the tuples' own columns, weighted by count."""
        index = {c: i for i, c in enumerate(self.alphabet)}
        freqs = np.zeros(len(self.alphabet))
        for tup, count in enumerate(self.counts):
            for char in self.column(tup):
                if char in index:
                    freqs[index[char]] += count
        total = freqs.sum()
        return freqs / total if total > 0 else freqs

    def num_informative(self, category: Optional[int] = None) -> int:
        """Columns with at least two non-gap, non-missing characters."""
        if category is not None and self.cat_counts is None:
            raise InputFormatError("store has no per-category counts")
        total = 0
        for tup in range(self.ntuples):
            col = self.column(tup)
            nchars = sum(1 for c in col if c != GAP_CHAR and c not in self.missing)
            if nchars < 2:
                continue
            if category is None:
                total += int(self.counts[tup])
            elif category < self.ncats:
                total += int(self.cat_counts[tup, category])
        return total

    def all_missing_except(self, tup: int, ref: int) -> bool:
        """True if every sequence but ``ref`` (1-based) is missing in ``tup``."""
        col = self.column(tup)
        return all(c in self.missing for i, c in enumerate(col) if i != ref - 1)


def _categories_or_background(store: TupleStore) -> np.ndarray:
    if store.categories is not None:
        return store.categories
    return np.zeros(store.length, dtype=int)


__all__ = ["TupleStore", "Block", "DEFAULT_BLOCK_NAME"]
