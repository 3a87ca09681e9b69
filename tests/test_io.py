"""Unit tests for FASTA and GFF input/output."""

from __future__ import annotations

import io

import pytest

from phylohmm.errors import InputFormatError
from phylohmm.types.alignment import Alignment
from phylohmm.types.features import Feature, group_features
from phylohmm.utils.fasta import read_alignment_fasta, write_alignment_fasta
from phylohmm.utils.gff import format_feature, parse_gff_line, read_gff, write_gff

GFF_TEXT = (
    "##gff-version 2\n"
    "MSA\tphylohmm\tCDS\t5\t10\t.\t+\t0\texon_id \"g1\"; transcript_id \"t1\";\n"
    "\n"
    "human\tsrc\tstart_codon\t5\t7\t0.875\t-\t.\tID=s1;Parent=t1\n"
    "MSA\tsrc\tCNS\t20\t30\t.\t.\t.\n"
)


def test_read_alignment_fasta(tmp_path):
    """Test reading an aligned FASTA file."""
    path = tmp_path / "aln.fa"
    path.write_text(">human\nACGT-a\n>mouse\nAC.TNA\n", encoding="utf-8")
    aln = read_alignment_fasta(path)
    assert aln.names == ["human", "mouse"]
    assert aln.rows == ["ACGT-A", "ACNTNA"]


def test_read_alignment_fasta_selects_ids(tmp_path):
    """Test restricting the sequences read."""
    path = tmp_path / "aln.fa"
    path.write_text(">human\nACGT\n>mouse\nACGA\n", encoding="utf-8")
    assert read_alignment_fasta(path, ids=["mouse"]).names == ["mouse"]
    with pytest.raises(InputFormatError):
        read_alignment_fasta(path, ids=["dog"])


def test_write_alignment_fasta_round_trip(tmp_path):
    """Test that a written alignment reads back unchanged."""
    aln = Alignment(names=["human", "dog"], rows=["AC-GT", "ACNGA"])
    path = tmp_path / "out.fa"
    write_alignment_fasta(aln, path)
    assert read_alignment_fasta(path) == aln


def test_read_gff_parses_fields():
    """Test parsing GTF and GFF3 style records."""
    feats = read_gff(io.StringIO(GFF_TEXT))
    assert len(feats) == 3
    cds, start, cns = feats
    assert (cds.seqname, cds.feature, cds.start, cds.end) == ("MSA", "CDS", 5, 10)
    assert cds.frame == 0
    assert cds.score is None
    assert cds.attributes == {"exon_id": "g1", "transcript_id": "t1"}
    assert start.score == pytest.approx(0.875)
    assert start.strand == "-"
    assert start.frame is None
    assert start.attributes == {"ID": "s1", "Parent": "t1"}
    assert cns.attributes == {}


def test_parse_gff_line_errors():
    """Test rejection of malformed records."""
    with pytest.raises(InputFormatError):
        parse_gff_line("MSA\tsrc\tCDS\t5\t10")
    with pytest.raises(InputFormatError):
        parse_gff_line("MSA\tsrc\tCDS\tfive\t10\t.\t+\t.", lineno=3)
    with pytest.raises(InputFormatError):
        parse_gff_line("MSA\tsrc\tCDS\t5\t10\t.\tx\t.")


def test_write_gff_round_trip(tmp_path):
    """Test that written features read back equal."""
    feats = [
        Feature("MSA", "phylohmm", "CDS", 3, 8, score=0.5, strand="+", frame=2,
                attributes={"exon_id": "1"}),
        Feature("MSA", "phylohmm", "CNS", 12, 14),
    ]
    path = tmp_path / "out.gff"
    write_gff(feats, path)
    assert read_gff(path) == feats
    assert format_feature(feats[1]).endswith("\t.\t.\t.")


def test_group_features_by_tag():
    """Test grouping features by a shared attribute."""
    feats = read_gff(io.StringIO(GFF_TEXT))
    groups = group_features(feats, "exon_id")
    assert [g.group_id for g in groups][0] == "g1"
    assert len(groups) == 3
    assert groups[0].start == 5
    assert groups[0].strand == "+"
