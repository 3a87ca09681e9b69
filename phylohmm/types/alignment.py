"""Multiple sequence alignment type."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Literal, Optional, Sequence

import numpy as np

from phylohmm.errors import BadAlphabet, InputFormatError

GAP_CHAR = "-"
DEFAULT_ALPHABET = "ACGT"
DEFAULT_MISSING = "N*"

GapStripMode = Literal["all", "any"]

_COMPLEMENT: Dict[str, str] = {"A": "T", "C": "G", "G": "C", "T": "A"}


def complement_char(char: str) -> str:
    """Return the Watson-Crick complement of a base; other characters pass through."""
    return _COMPLEMENT.get(char, char)


def _normalize_row(row: str, alphabet: str, missing: str) -> str:
    """Apply the reader substitution rules to one aligned row.

    Rows are upper-cased unless the alphabet itself has lower-case letters.
    A '.' is read as missing data (unless it belongs to the alphabet), and an
    unrecognized letter is replaced by 'N'. Any other unrecognized character
    is an error.
    """
    do_upper = not any(c.islower() for c in alphabet)
    out: List[str] = []
    for char in row:
        if char.isspace():
            continue
        base = char.upper() if do_upper else char
        if base == "." and "." not in alphabet:
            base = missing[0]
        elif base != GAP_CHAR and base not in missing and base not in alphabet:
            if base.isalpha():
                base = "N"
            else:
                raise BadAlphabet(
                    f"bad character in multiple sequence alignment: '{char}'"
                )
        out.append(base)
    return "".join(out)


@dataclass(frozen=True)
class Alignment:
    """Multiple sequence alignment held as explicit rows.

    Attributes:
        names: Sequence names, one per row.
        rows: Aligned sequences; all of equal length.
        alphabet: Characters with their own substitution states.
        missing: Missing-data characters (the first one is used for padding).
        categories: Optional per-column category ids.
        informative: Optional per-sequence flags for phylogenetic analysis.
        idx_offset: Coordinate offset of column 0 in a larger alignment.
    """

    names: List[str]
    rows: List[str]
    alphabet: str = DEFAULT_ALPHABET
    missing: str = DEFAULT_MISSING
    categories: Optional[np.ndarray] = field(default=None, compare=False)
    informative: Optional[List[bool]] = None
    idx_offset: int = 0

    def __post_init__(self) -> None:
        if len(self.names) != len(self.rows):
            raise InputFormatError("names and rows must have the same length.")
        if not self.rows:
            raise InputFormatError("At least 1 sequence is required.")
        if len(set(self.names)) != len(self.names):
            raise InputFormatError(f"duplicate sequence names: {self.names}")

        rows = [_normalize_row(row, self.alphabet, self.missing) for row in self.rows]
        if any(len(row) != len(rows[0]) for row in rows):
            raise InputFormatError("bad sequence length in multiple alignment.")
        object.__setattr__(self, "rows", rows)
        object.__setattr__(self, "names", list(self.names))

        if self.categories is not None:
            cats = np.asarray(self.categories, dtype=int)
            if cats.shape != (len(rows[0]),):
                raise InputFormatError(
                    f"categories must have one entry per column ({len(rows[0])})."
                )
            object.__setattr__(self, "categories", cats)

        if self.informative is not None and len(self.informative) != len(rows):
            raise InputFormatError("informative flags must match sequence count.")

    def __len__(self) -> int:
        return len(self.rows[0])

    @property
    def length(self) -> int:
        """Number of columns in the alignment."""
        return len(self.rows[0])

    @property
    def nseqs(self) -> int:
        """Number of sequences in the alignment."""
        return len(self.rows)

    @property
    def ncats(self) -> int:
        """One more than the largest category id, or 0 without categories."""
        if self.categories is None or len(self.categories) == 0:
            return 0
        return int(self.categories.max()) + 1

    def is_missing(self, char: str) -> bool:
        return char in self.missing

    def column(self, pos: int) -> str:
        """Return column ``pos`` (0-based) as a string, one char per sequence."""
        return "".join(row[pos] for row in self.rows)

    def seq_index(self, name: str) -> Optional[int]:
        """Return the 0-based index of the named sequence, or None."""
        try:
            return self.names.index(name)
        except ValueError:
            return None

    def seq_length(self, seq: int) -> int:
        """Number of non-gap characters in row ``seq`` (0-based)."""
        return sum(1 for c in self.rows[seq] if c != GAP_CHAR)

    def with_categories(self, categories: Iterable[int]) -> "Alignment":
        return replace(self, categories=np.asarray(list(categories), dtype=int))

    def with_informative(self, not_informative: Sequence[str]) -> "Alignment":
        """Return a copy in which the listed sequences are non-informative."""
        unknown = [name for name in not_informative if name not in self.names]
        if unknown:
            raise InputFormatError(f"no match for names in alignment: {unknown}")
        flags = [name not in not_informative for name in self.names]
        return replace(self, informative=flags)

    def sub_alignment(
        self,
        start: int,
        end: int,
        seqs: Optional[Sequence[int]] = None,
        include: bool = True,
    ) -> "Alignment":
        """Return columns [start, end) for the selected rows.

        ``seqs`` lists 0-based row indices to include (or to exclude when
        ``include`` is False). The new alignment's offset accounts for
        ``start``.
        """
        if end <= start:
            raise InputFormatError(f"empty column range [{start}, {end}).")
        if seqs is None:
            keep = list(range(self.nseqs))
        else:
            for idx in seqs:
                if idx < 0 or idx >= self.nseqs:
                    raise InputFormatError(f"sequence index {idx} out of range.")
            keep = list(seqs) if include else [
                i for i in range(self.nseqs) if i not in set(seqs)
            ]
        return Alignment(
            names=[self.names[i] for i in keep],
            rows=[self.rows[i][start:end] for i in keep],
            alphabet=self.alphabet,
            missing=self.missing,
            categories=None if self.categories is None else self.categories[start:end],
            informative=(
                None if self.informative is None else [self.informative[i] for i in keep]
            ),
            idx_offset=self.idx_offset + start,
        )

    def _select_columns(self, keep: List[int]) -> "Alignment":
        return replace(
            self,
            rows=["".join(row[i] for i in keep) for row in self.rows],
            categories=None if self.categories is None else self.categories[keep],
        )

    def project(self, ref: int) -> "Alignment":
        """Drop every column in which sequence ``ref`` (1-based) has a gap."""
        if ref < 1 or ref > self.nseqs:
            raise InputFormatError(f"reference index {ref} out of range.")
        row = self.rows[ref - 1]
        return self._select_columns([i for i, c in enumerate(row) if c != GAP_CHAR])

    def strip_gaps(self, mode: GapStripMode = "all") -> "Alignment":
        """Remove columns that are all gaps (``all``) or contain a gap (``any``)."""
        keep = []
        for i in range(self.length):
            col = self.column(i)
            gapped = (
                all(c == GAP_CHAR for c in col)
                if mode == "all"
                else any(c == GAP_CHAR for c in col)
            )
            if not gapped:
                keep.append(i)
        return self._select_columns(keep)

    def num_gapped_columns(
        self, mode: GapStripMode = "any", start: int = 0, end: Optional[int] = None
    ) -> int:
        end = self.length if end is None else end
        count = 0
        for i in range(start, end):
            col = self.column(i)
            if mode == "all" and all(c == GAP_CHAR for c in col):
                count += 1
            elif mode == "any" and GAP_CHAR in col:
                count += 1
        return count

    def base_frequencies(self, start: int = 0, end: Optional[int] = None) -> np.ndarray:
        """Frequencies of alphabet characters over columns [start, end)."""
        end = self.length if end is None else end
        freqs = np.zeros(len(self.alphabet))
        index = {c: i for i, c in enumerate(self.alphabet)}
        for row in self.rows:
            for char in row[start:end]:
                if char in index:
                    freqs[index[char]] += 1
        total = freqs.sum()
        return freqs / total if total > 0 else freqs

    def num_informative_sites(self, category: Optional[int] = None) -> int:
        """Count columns with at least two non-gap, non-missing characters."""
        count = 0
        for i in range(self.length):
            if category is not None and (
                self.categories is None or self.categories[i] != category
            ):
                continue
            col = self.column(i)
            ninf = sum(1 for c in col if c != GAP_CHAR and not self.is_missing(c))
            if ninf >= 2:
                count += 1
        return count

    def missing_column(self, ref: int, pos: int) -> bool:
        """True if every sequence but ``ref`` (1-based) has missing data at ``pos``."""
        return all(
            self.is_missing(row[pos])
            for i, row in enumerate(self.rows)
            if i != ref - 1
        )

    def reorder_rows(self, target_order: Sequence[str]) -> "Alignment":
        """Reorder rows to ``target_order``; absent names become missing data."""
        unlisted = [name for name in self.names if name not in target_order]
        if unlisted:
            raise InputFormatError(f"names missing from reorder list: {unlisted}")
        filler = self.missing[0] * self.length
        rows = []
        for name in target_order:
            idx = self.seq_index(name)
            rows.append(filler if idx is None else self.rows[idx])
        informative = None
        if self.informative is not None:
            informative = [
                True if self.seq_index(n) is None else self.informative[self.seq_index(n)]
                for n in target_order
            ]
        return replace(self, names=list(target_order), rows=rows, informative=informative)

    def reverse_complement(self) -> "Alignment":
        rows = ["".join(complement_char(c) for c in reversed(row)) for row in self.rows]
        cats = None if self.categories is None else self.categories[::-1].copy()
        return replace(self, rows=rows, categories=cats)

    def mask_macro_indels(self, k: int, ref: int = 0) -> "Alignment":
        """Turn gaps longer than ``k`` into missing data, except in row ``ref`` (1-based)."""
        rows = []
        for idx, row in enumerate(self.rows):
            if idx == ref - 1:
                rows.append(row)
                continue
            chars = list(row)
            run_start = None
            for i in range(len(chars) + 1):
                is_gap = i < len(chars) and chars[i] == GAP_CHAR
                if is_gap and run_start is None:
                    run_start = i
                elif not is_gap and run_start is not None:
                    if i - run_start > k:
                        chars[run_start:i] = self.missing[0] * (i - run_start)
                    run_start = None
            rows.append("".join(chars))
        return replace(self, rows=rows)

    def __str__(self) -> str:
        class_name = self.__class__.__name__
        width = max(len(name) for name in self.names)
        body = "\n".join(
            f"      {name:<{width}}  {row}" for name, row in zip(self.names, self.rows)
        )
        return (
            f"{class_name} (\n"
            f"   columns: {self.length}, offset: {self.idx_offset}\n"
            f"{body}\n"
            f")"
        )


__all__ = [
    "Alignment",
    "GAP_CHAR",
    "DEFAULT_ALPHABET",
    "DEFAULT_MISSING",
    "complement_char",
]
