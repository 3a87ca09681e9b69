"""Unit tests for coordinate maps and feature remapping."""

from __future__ import annotations

import pytest

from phylohmm.coords.coord_map import (
    CoordMap,
    add_offset,
    map_seq_to_seq,
    remap_features,
)
from phylohmm.errors import ConfigError, CoordinateError
from phylohmm.types.alignment import Alignment
from phylohmm.types.features import Feature


def _alignment() -> Alignment:
    return Alignment(
        names=["human", "mouse", "dog"],
        rows=["ACGTACGTAC", "ACGT--GTAC", "--GTACGTAA"],
    )


def _feature(start: int, end: int, feature: str = "CDS", seqname: str = "MSA", strand="+"):
    return Feature(
        seqname=seqname, source="test", feature=feature, start=start, end=end, strand=strand
    )


def test_build_records_gapless_runs():
    """Test the runs recorded for a sequence with an internal gap."""
    cmap = CoordMap.build(_alignment(), 2)
    assert cmap.msa_starts == [1, 7]
    assert cmap.seq_starts == [1, 5]
    assert cmap.msa_len == 10
    assert cmap.seq_len == 8


def test_build_rejects_bad_reference():
    """Test that reference indices are 1-based and range checked."""
    with pytest.raises(CoordinateError):
        CoordMap.build(_alignment(), 0)
    with pytest.raises(CoordinateError):
        CoordMap.build(_alignment(), 4)


def test_round_trip_on_ungapped_positions():
    """Test align_to_seq(seq_to_align(p)) == p for every sequence position."""
    aln = _alignment()
    for ref in range(1, aln.nseqs + 1):
        cmap = CoordMap.build(aln, ref)
        for pos in range(1, cmap.seq_len + 1):
            assert cmap.align_to_seq(cmap.seq_to_align(pos)) == pos


def test_gap_columns_map_to_preceding_position():
    """Test that columns inside a gap map to the position before it."""
    cmap = CoordMap.build(_alignment(), 2)
    assert cmap.align_to_seq(5) == cmap.align_to_seq(4) == 4
    assert cmap.align_to_seq(6) == 4
    assert cmap.align_to_seq(7) == 5
    assert cmap.seq_to_align(5) == 7


def test_out_of_range_coordinates_are_unmapped():
    """Test that unmappable coordinates return None."""
    cmap = CoordMap.build(_alignment(), 3)
    assert cmap.align_to_seq(1) is None
    assert cmap.align_to_seq(2) is None
    assert cmap.align_to_seq(3) == 1
    assert cmap.align_to_seq(11) is None
    assert cmap.seq_to_align(0) is None
    assert cmap.seq_to_align(9) is None


def test_map_seq_to_seq_between_sequences():
    """Test translating a position from one sequence frame to another."""
    aln = _alignment()
    human = CoordMap.build(aln, 1)
    dog = CoordMap.build(aln, 3)
    assert map_seq_to_seq(human, dog, 5) == 3
    assert map_seq_to_seq(None, dog, 5) == 3
    assert map_seq_to_seq(dog, None, 1) == 3
    assert map_seq_to_seq(human, dog, 1) is None


def test_start_codon_keeps_span_across_indel():
    """Test that a 3-column start codon keeps its span when remapped."""
    aln = _alignment()
    feat = _feature(4, 6, feature="start_codon", seqname="mouse")
    to_msa = remap_features(aln, [feat], None, 0)
    assert len(to_msa) == 1
    assert to_msa[0].start == 4
    assert to_msa[0].end - to_msa[0].start == 2

    back = remap_features(aln, [_feature(4, 6, feature="start_codon")], 0, 2)
    assert back[0].start == 4
    assert back[0].end - back[0].start == 2


def test_minus_strand_signal_is_anchored_at_end():
    """Test that left-anchored signals on the minus strand keep their end."""
    aln = _alignment()
    feat = _feature(4, 6, feature="stop_codon", seqname="mouse", strand="-")
    mapped = remap_features(aln, [feat], None, 0)[0]
    assert mapped.end == 8
    assert mapped.start == 6


def test_remap_drops_and_truncates():
    """Test that unmapped features are dropped or truncated."""
    aln = _alignment()
    dropped = _feature(1, 2)
    truncated = _feature(2, 4)
    kept = remap_features(aln, [dropped, truncated], 0, 3)
    assert len(kept) == 1
    assert (kept[0].start, kept[0].end) == (1, 2)


def test_remap_with_offset_and_same_frame():
    """Test that identical frames only apply the offset."""
    aln = _alignment()
    shifted = remap_features(aln, [_feature(2, 4)], 0, 0, offset=100)
    assert (shifted[0].start, shifted[0].end) == (102, 104)


def test_remap_errors():
    """Test configuration and unknown-sequence errors."""
    aln = _alignment()
    with pytest.raises(ConfigError):
        remap_features(aln, [_feature(1, 2)], None, None)
    with pytest.raises(CoordinateError):
        remap_features(aln, [_feature(1, 2, seqname="cat")], None, 0)


def test_add_offset_clips_and_drops():
    """Test shifting with clipping to the valid range."""
    feats = [_feature(1, 3), _feature(5, 9), _feature(12, 14)]
    shifted = add_offset(feats, -2, max_coord=10)
    assert [(f.start, f.end) for f in shifted] == [(1, 1), (3, 7), (10, 10)]
    assert add_offset([_feature(1, 2)], -5) == []
