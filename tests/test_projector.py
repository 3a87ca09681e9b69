"""Unit tests for category labelling and feature projection."""

from __future__ import annotations

import numpy as np
import pytest

from phylohmm.algorithms import PathCounts, PathKey, PhyloHMM
from phylohmm.coords.projector import (
    FeatureProjector,
    background_category_ids,
    label_categories,
)
from phylohmm.errors import CoordinateError
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.alignment import Alignment
from phylohmm.types.categories import CategoryMap, CategoryRange
from phylohmm.types.features import Feature
from phylohmm.types.parameters import HMMParameters
from phylohmm.types.results import PosteriorResult


def _cds_map() -> CategoryMap:
    return CategoryMap(
        ranges=[
            CategoryRange("background", 0),
            CategoryRange("CDS", 1, cycle=3, precedence=2),
            CategoryRange("start_codon", 4, precedence=1),
        ]
    )


def _cds_hmm() -> PhyloHMM:
    """Background plus one state per codon position and a start codon state."""
    params = HMMParameters.from_probabilities(
        ["bg", "cds1", "cds2", "cds3", "start"],
        np.full((5, 5), 0.2),
        state_categories=[0, 1, 2, 3, 4],
    )
    return PhyloHMM(params, category_map=_cds_map())


def _alignment(length: int = 12) -> Alignment:
    row = ("ACGT" * length)[:length]
    return Alignment(names=["human", "mouse"], rows=[row, row])


def _feature(name: str, start: int, end: int, strand: str = "+", frame=None) -> Feature:
    return Feature("MSA", "test", name, start, end, strand=strand, frame=frame)


def test_label_categories_with_precedence():
    """Test cyclic labelling and overwriting by higher-priority features."""
    feats = [
        _feature("CDS", 2, 7),
        _feature("start_codon", 2, 4),
        _feature("intron", 8, 10),
    ]
    labelled = label_categories(_alignment(), feats, _cds_map())
    assert labelled.categories.tolist() == [0, 4, 4, 4, 1, 2, 3, 0, 0, 0, 0, 0]


def test_lower_priority_feature_does_not_overwrite():
    """Test that a CDS does not replace an earlier start codon."""
    feats = [_feature("start_codon", 2, 4), _feature("CDS", 2, 7)]
    labelled = label_categories(_alignment(), feats, _cds_map())
    assert labelled.categories.tolist()[:7] == [0, 4, 4, 4, 1, 2, 3]


def test_label_categories_minus_strand_and_frame():
    """Test offsets counted from the end on the minus strand."""
    minus = label_categories(_alignment(), [_feature("CDS", 2, 7, strand="-")], _cds_map())
    assert minus.categories.tolist()[1:7] == [3, 2, 1, 3, 2, 1]
    framed = label_categories(_alignment(), [_feature("CDS", 1, 3, frame=1)], _cds_map())
    assert framed.categories.tolist()[:3] == [2, 3, 1]


def test_label_categories_ignores_out_of_range():
    """Test that features beyond the alignment are skipped."""
    labelled = label_categories(_alignment(), [_feature("CDS", 10, 20)], _cds_map())
    assert not labelled.categories.any()


def test_path_to_features_groups_runs():
    """Test conversion of a decoded path into grouped features."""
    projector = FeatureProjector(_cds_hmm(), idpref="g")
    path = [0, 4, 4, 4, 1, 2, 3, 0, 0, 2, 3, 0]
    feats = projector.path_to_features(path)
    assert [(f.feature, f.start, f.end) for f in feats] == [
        ("start_codon", 2, 4),
        ("CDS", 5, 7),
        ("CDS", 10, 11),
    ]
    assert [f.attributes["exon_id"] for f in feats] == ["g1", "g1", "g2"]
    assert feats[0].frame is None
    assert feats[1].frame == 0
    assert feats[2].frame == 2
    assert all(f.seqname == "MSA" and f.strand == "+" for f in feats)


def test_path_to_features_on_reflected_hmm():
    """Test that reverse-strand states yield minus-strand features."""
    hmm = _cds_hmm().reflect([0])
    rev = [hmm.state_names.index(name) for name in ("cds3(-)", "cds2(-)", "cds1(-)")]
    feats = FeatureProjector(hmm).path_to_features([0] + rev + [0])
    assert len(feats) == 1
    assert (feats[0].start, feats[0].end, feats[0].strand) == (2, 4, "-")
    assert feats[0].frame == 0


def test_path_counts_to_features():
    """Test features built from sampled run counts."""
    counts = PathCounts(5, nsamples=4)
    counts.counts[PathKey("chr1", 2, 5)] = np.array([0, 0, 3, 1, 0])
    aln = Alignment(names=["a"], rows=["ACGTACGT"], idx_offset=100)
    store = TupleStore.build(aln, name="chr1")
    projector = FeatureProjector(_cds_hmm())
    feats = projector.path_counts_to_features(counts, store)
    assert len(feats) == 1
    feat = feats[0]
    assert (feat.seqname, feat.feature, feat.start, feat.end) == ("chr1", "CDS", 103, 105)
    assert feat.score == pytest.approx(0.75)
    plain = projector.path_counts_to_features(counts)
    assert (plain[0].start, plain[0].end) == (3, 5)
    with pytest.raises(ValueError):
        projector.path_counts_to_features(PathCounts(5))


def test_posterior_scores_sum_selected_states():
    """Test per-column posterior mass of a state set."""
    result = PosteriorResult(
        log_likelihood=0.0,
        posteriors=np.array([[0.5, 0.1], [0.3, 0.6], [0.2, 0.3]]),
    )
    np.testing.assert_allclose(FeatureProjector.posterior_scores(result, [1, 2]), [0.5, 0.9])
    with pytest.raises(ValueError):
        FeatureProjector.posterior_scores(result, [])


def test_to_reference_maps_into_sequence_frame():
    """Test mapping alignment-frame features to a reference sequence."""
    aln = Alignment(names=["human", "mouse"], rows=["--ACGTACGT", "ACGTACGTAC"])
    projector = FeatureProjector(_cds_hmm())
    mapped = projector.to_reference(aln, [_feature("CDS", 5, 7)], ref_index=1, offset=10)
    assert (mapped[0].start, mapped[0].end) == (13, 15)
    assert mapped[0].seqname == "human"


def _exon_hmm() -> PhyloHMM:
    """Background, one coding state and a stop codon state."""
    params = HMMParameters.from_probabilities(
        ["bg", "cds", "stop"],
        [[0.8, 0.1, 0.1], [0.1, 0.6, 0.3], [0.5, 0.0, 0.5]],
        state_categories=[0, 1, 2],
    )
    cmap = CategoryMap(
        ranges=[
            CategoryRange("background", 0),
            CategoryRange("CDS", 1),
            CategoryRange("stop_codon", 2),
        ]
    )
    return PhyloHMM(params, category_map=cmap)


def test_score_features_log_odds_against_background():
    """Test coding scores extended over adjacent signals."""
    projector = FeatureProjector(_exon_hmm())
    emissions = np.zeros((3, 6))
    emissions[0] = np.log(0.1)
    feats = [_feature("CDS", 2, 3), _feature("stop_codon", 4, 4), _feature("CDS", 6, 6)]
    scored = projector.score_features(feats, emissions, background_states=[0])
    assert scored[0].score == pytest.approx(3 * np.log(10.0))
    assert scored[1].score is None
    assert scored[2].score == pytest.approx(np.log(10.0))

    alone = projector.score_features(feats[:1], emissions, background_states=[0])
    assert alone[0].score == pytest.approx(2 * np.log(10.0))
    assert feats[0].score is None


def test_score_features_rejects_features_outside_emissions():
    """Test that a feature beyond the scored columns raises."""
    projector = FeatureProjector(_exon_hmm())
    with pytest.raises(CoordinateError):
        projector.score_features([_feature("CDS", 5, 8)], np.zeros((3, 6)), [0])


def test_background_category_ids():
    """Test selecting the background categories present in a map."""
    assert background_category_ids(_cds_map(), ["background", "CNS"]) == [0]
