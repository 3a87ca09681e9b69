"""Aggregated counts of sampled feature paths, with a plain-text format.

File format: a header ``#nsamples <n> nstates <k>`` followed by one
tab-separated line per key, ``block start end c0,c1,...``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from phylohmm.errors import InputFormatError


@dataclass(frozen=True, order=True)
class PathKey:
    """A maximal run of feature states: 0-based, half-open within its block."""

    block: str
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def feature_runs(path: Sequence[int], background_states: Sequence[int]) -> List[Tuple[int, int]]:
    """Maximal [start, end) runs of states outside ``background_states``."""
    background = set(background_states)
    runs: List[Tuple[int, int]] = []
    start = None
    for pos, state in enumerate(path):
        is_feature = int(state) not in background
        if is_feature and start is None:
            start = pos
        elif not is_feature and start is not None:
            runs.append((start, pos))
            start = None
    if start is not None:
        runs.append((start, len(path)))
    return runs


class PathCounts:
    """Per-run state counts over the retained samples."""

    def __init__(self, nstates: int, nsamples: int = 0) -> None:
        if nstates < 1:
            raise ValueError(f"nstates must be >= 1, got {nstates}")
        self.nstates = nstates
        self.nsamples = nsamples
        self.counts: Dict[PathKey, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self.counts)

    def __contains__(self, key: PathKey) -> bool:
        return key in self.counts

    def __getitem__(self, key: PathKey) -> np.ndarray:
        return self.counts[key]

    def __iter__(self) -> Iterator[PathKey]:
        return iter(sorted(self.counts))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PathCounts):
            return NotImplemented
        return (
            self.nstates == other.nstates
            and self.nsamples == other.nsamples
            and self.counts.keys() == other.counts.keys()
            and all(np.array_equal(v, other.counts[k]) for k, v in self.counts.items())
        )

    def items(self) -> Iterator[Tuple[PathKey, np.ndarray]]:
        for key in sorted(self.counts):
            yield key, self.counts[key]

    def add_path(
        self, block: str, path: Sequence[int], background_states: Sequence[int]
    ) -> None:
        """Count every feature run of one sampled block path.

        Each distinct state visited inside a run adds one to its entry.
        """
        for start, end in feature_runs(path, background_states):
            key = PathKey(block, start, end)
            vector = self.counts.get(key)
            if vector is None:
                vector = np.zeros(self.nstates, dtype=int)
                self.counts[key] = vector
            for state in set(int(s) for s in path[start:end]):
                vector[state] += 1

    def best_state(self, key: PathKey) -> Tuple[int, int]:
        """State with the highest count for ``key`` (lowest index on ties)."""
        vector = self.counts[key]
        state = int(np.argmax(vector))
        return state, int(vector[state])

    def write(self, path: Union[str, Path]) -> None:
        path = Path(path)
        for key in self.counts:
            if any(c.isspace() for c in key.block):
                raise InputFormatError(f"block name '{key.block}' contains whitespace")
        with path.open("w", encoding="utf-8") as handle:
            handle.write(f"#nsamples {self.nsamples} nstates {self.nstates}\n")
            for key, vector in self.items():
                values = ",".join(str(int(v)) for v in vector)
                handle.write(f"{key.block}\t{key.start}\t{key.end}\t{values}\n")

    @classmethod
    def read(cls, path: Union[str, Path], nstates: Optional[int] = None) -> "PathCounts":
        """Load counts written by :meth:`write`.

        If ``nstates`` is given it must match the file header.
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as handle:
            header = handle.readline().split()
            if len(header) != 4 or header[0] != "#nsamples" or header[2] != "nstates":
                raise InputFormatError(f"bad path-count header in {path}")
            try:
                file_nsamples, file_nstates = int(header[1]), int(header[3])
            except ValueError:
                raise InputFormatError(f"bad path-count header in {path}") from None
            if nstates is not None and nstates != file_nstates:
                raise InputFormatError(
                    f"path counts have {file_nstates} states, expected {nstates}"
                )
            result = cls(file_nstates, file_nsamples)
            for lineno, line in enumerate(handle, start=2):
                if not line.strip():
                    continue
                fields = line.rstrip("\n").split("\t")
                if len(fields) != 4:
                    raise InputFormatError(f"{path}:{lineno}: expected 4 fields")
                try:
                    key = PathKey(fields[0], int(fields[1]), int(fields[2]))
                    vector = np.array([int(v) for v in fields[3].split(",")], dtype=int)
                except ValueError:
                    raise InputFormatError(f"{path}:{lineno}: malformed entry") from None
                if len(vector) != file_nstates:
                    raise InputFormatError(
                        f"{path}:{lineno}: expected {file_nstates} counts"
                    )
                result.counts[key] = vector
        return result


__all__ = ["PathKey", "PathCounts", "feature_runs"]
