"""Simple per-state indel model over the gap pattern of each column."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from phylohmm.errors import InputFormatError
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.alignment import GAP_CHAR


@dataclass(frozen=True)
class IndelHistory:
    """Gap indicators of the non-reference sequences, column by column.

    Attributes:
        seq_indices: 0-based rows described by ``gaps``.
        gaps: Boolean matrix, one row per sequence in ``seq_indices``.
        block_starts: First column of each independent block; no gap is
            carried into these columns from the column before.
    """

    seq_indices: List[int]
    gaps: np.ndarray
    block_starts: Tuple[int, ...] = (0,)

    @classmethod
    def from_store(cls, store: TupleStore, ref_index: int) -> "IndelHistory":
        """Build from an ordered store; ``ref_index`` is 1-based."""
        tuple_idx = store.require_ordered("building an indel history")
        if ref_index < 1 or ref_index > store.nseqs:
            raise InputFormatError(f"reference index {ref_index} out of range")
        seqs = [s for s in range(store.nseqs) if s != ref_index - 1]
        gapped = np.array(
            [[store.column(t)[s] == GAP_CHAR for t in range(store.ntuples)] for s in seqs],
            dtype=bool,
        ).reshape(len(seqs), store.ntuples)
        return cls(
            seq_indices=seqs,
            gaps=gapped[:, tuple_idx],
            block_starts=tuple(block.start for block in store.blocks),
        )

    @property
    def length(self) -> int:
        return self.gaps.shape[1]

    def transition_counts(self) -> np.ndarray:
        """Per-column counts of (open, no-open, extend, close) events.

        Returns a 4 x length matrix. The first column of every block is
        conditioned on no gap before it.
        """
        prev = np.zeros_like(self.gaps)
        prev[:, 1:] = self.gaps[:, :-1]
        starts = [s for s in self.block_starts if 0 <= s < self.length]
        prev[:, starts] = False
        now = self.gaps
        return np.vstack(
            [
                (now & ~prev).sum(axis=0),
                (~now & ~prev).sum(axis=0),
                (now & prev).sum(axis=0),
                (~now & prev).sum(axis=0),
            ]
        ).astype(float)


@dataclass(frozen=True)
class IndelModel:
    """Gap open/extend probabilities per hidden state."""

    open_probs: Sequence[float]
    extend_probs: Sequence[float]

    def __post_init__(self) -> None:
        if len(self.open_probs) != len(self.extend_probs):
            raise ValueError("open_probs and extend_probs must have the same length")
        for p in list(self.open_probs) + list(self.extend_probs):
            if not 0.0 < p < 1.0:
                raise ValueError(f"indel probabilities must be in (0, 1), got {p}")

    @property
    def nstates(self) -> int:
        return len(self.open_probs)

    def log_probs(self, history: IndelHistory) -> np.ndarray:
        """nstates x length log-probabilities of the observed gap patterns."""
        opens = np.asarray(self.open_probs, dtype=float)
        extends = np.asarray(self.extend_probs, dtype=float)
        weights = np.column_stack(
            [np.log(opens), np.log1p(-opens), np.log(extends), np.log1p(-extends)]
        )
        return weights @ history.transition_counts()


__all__ = ["IndelHistory", "IndelModel"]
