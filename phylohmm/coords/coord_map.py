"""Coordinate translation between the alignment frame and sequence frames.

All coordinates here are 1-based. Frame 0 is the alignment itself; frame
``i`` (1-based) is the ungapped sequence in row ``i``.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

from phylohmm.errors import ConfigError, CoordinateError
from phylohmm.types.alignment import Alignment, GAP_CHAR
from phylohmm.types.features import ALIGNMENT_SEQNAME, Feature

logger = logging.getLogger(__name__)

ALIGNMENT_FRAME = 0

LEFT_ANCHORED = ("5'splice", "start_codon", "stop_codon", "cds3'ss")
RIGHT_ANCHORED = ("3'splice", "cds5'ss", "prestart")


@dataclass(frozen=True)
class CoordMap:
    """Start of every maximal gapless run of one sequence.

    ``msa_starts[i]`` is the alignment column and ``seq_starts[i]`` the
    sequence position where run ``i`` begins.
    """

    msa_starts: List[int]
    seq_starts: List[int]
    msa_len: int
    seq_len: int

    @classmethod
    def build(cls, alignment: Alignment, ref_index: int) -> "CoordMap":
        """Build the map of row ``ref_index`` (1-based)."""
        if ref_index < 1 or ref_index > alignment.nseqs:
            raise CoordinateError(
                f"reference index {ref_index} outside 1..{alignment.nseqs}"
            )
        row = alignment.rows[ref_index - 1]
        msa_starts: List[int] = []
        seq_starts: List[int] = []
        seq_pos = 0
        last_gap = True
        for col, char in enumerate(row):
            if char == GAP_CHAR:
                last_gap = True
                continue
            if last_gap:
                msa_starts.append(col + 1)
                seq_starts.append(seq_pos + 1)
            seq_pos += 1
            last_gap = False
        return cls(msa_starts, seq_starts, len(row), seq_pos)

    def seq_to_align(self, seq_pos: int) -> Optional[int]:
        if seq_pos < 1 or seq_pos > self.seq_len:
            return None
        idx = bisect.bisect_right(self.seq_starts, seq_pos) - 1
        return self.msa_starts[idx] + (seq_pos - self.seq_starts[idx])

    def align_to_seq(self, col: int) -> Optional[int]:
        """Sequence position of alignment column ``col``.

        A column inside a gap maps to the position just before the gap;
        columns before the first base are unmapped.
        """
        if col < 1 or col > self.msa_len:
            return None
        idx = bisect.bisect_right(self.msa_starts, col) - 1
        if idx < 0:
            return None
        next_seq_start = (
            self.seq_starts[idx + 1] if idx + 1 < len(self.seq_starts) else self.seq_len + 1
        )
        seq_pos = self.seq_starts[idx] + (col - self.msa_starts[idx])
        return min(seq_pos, next_seq_start - 1)


def map_seq_to_seq(
    from_map: Optional[CoordMap], to_map: Optional[CoordMap], coord: int
) -> Optional[int]:
    """Translate ``coord`` between frames; ``None`` maps stand for the alignment."""
    msa_coord = coord if from_map is None else from_map.seq_to_align(coord)
    if msa_coord is None:
        return None
    return msa_coord if to_map is None else to_map.align_to_seq(msa_coord)


def _frame_of(alignment: Alignment, seqname: str) -> int:
    if seqname.upper() == ALIGNMENT_SEQNAME:
        return ALIGNMENT_FRAME
    idx = alignment.seq_index(seqname)
    if idx is None:
        raise CoordinateError(f"name {seqname} not present in alignment")
    return idx + 1


def _reanchor(feat: Feature, orig_span: int) -> Feature:
    """Restore the original span of fixed-width signal features."""
    left = feat.feature in LEFT_ANCHORED
    right = feat.feature in RIGHT_ANCHORED
    if (left and feat.strand == "+") or (right and feat.strand == "-"):
        return replace(feat, end=feat.start + orig_span)
    if (right and feat.strand == "+") or (left and feat.strand == "-"):
        return replace(feat, start=feat.end - orig_span)
    return feat


def remap_features(
    alignment: Alignment,
    features: Sequence[Feature],
    from_frame: Optional[int],
    to_frame: Optional[int],
    offset: int = 0,
) -> List[Feature]:
    """Translate features from one coordinate frame to another.

    Frames are 0 for the alignment or a 1-based sequence index; ``None``
    infers the frame of each feature from its seqname. Features with both
    ends out of range are dropped, those with one end out of range are
    truncated. Coordinate maps are built once per pass.
    """
    if from_frame is None and to_frame is None:
        raise ConfigError("at most one of from_frame and to_frame may be inferred")
    if from_frame is not None and from_frame == to_frame:
        return [replace(f, start=f.start + offset, end=f.end + offset) for f in features]

    maps: Dict[int, CoordMap] = {}

    def _map_for(frame: int) -> Optional[CoordMap]:
        if frame == ALIGNMENT_FRAME:
            return None
        if frame not in maps:
            maps[frame] = CoordMap.build(alignment, frame)
        return maps[frame]

    kept: List[Feature] = []
    for feat in features:
        fseq = _frame_of(alignment, feat.seqname) if from_frame is None else from_frame
        tseq = _frame_of(alignment, feat.seqname) if to_frame is None else to_frame
        from_map = _map_for(fseq)
        to_map = _map_for(tseq)

        orig_span = feat.end - feat.start
        start = map_seq_to_seq(from_map, to_map, feat.start)
        end = map_seq_to_seq(from_map, to_map, feat.end)

        if start is None and end is None:
            logger.warning(
                "dropping %s %d-%d: both ends outside the target frame",
                feat.feature,
                feat.start,
                feat.end,
            )
            continue
        if start is None or end is None:
            logger.warning(
                "truncating %s %d-%d to the target frame",
                feat.feature,
                feat.start,
                feat.end,
            )
        if start is None:
            start = 1
        if end is None:
            end = to_map.seq_len if to_map is not None else alignment.length

        mapped = replace(feat, start=start + offset, end=end + offset)
        if mapped.end - mapped.start != orig_span:
            mapped = _reanchor(mapped, orig_span)
        kept.append(mapped)
    return kept


def add_offset(
    features: Sequence[Feature], offset: int, max_coord: Optional[int] = None
) -> List[Feature]:
    """Shift features by ``offset``, clipping to [1, max_coord].

    Features left entirely outside the range are dropped.
    """
    shifted: List[Feature] = []
    for feat in features:
        start, end = feat.start + offset, feat.end + offset
        upper = end if max_coord is None else max_coord
        if end < 1 or start > upper:
            logger.warning("dropping %s %d-%d after offset", feat.feature, start, end)
            continue
        shifted.append(replace(feat, start=max(start, 1), end=min(end, upper)))
    return shifted


__all__ = [
    "CoordMap",
    "map_seq_to_seq",
    "remap_features",
    "add_offset",
    "ALIGNMENT_FRAME",
    "LEFT_ANCHORED",
    "RIGHT_ANCHORED",
]
