"""Unit tests for the emission cache and the indel model."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.emissions.cache import EmissionCache, check_model_constraints
from phylohmm.emissions.indel import IndelHistory, IndelModel
from phylohmm.emissions.tree_model import TreeModel
from phylohmm.errors import ModelConstraintError, UnorderedAlignment
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.alignment import Alignment
from phylohmm.types.parameters import HMMParameters

UNIFORM = [0.25, 0.25, 0.25, 0.25]
NEWICK = "((human:0.1,mouse:0.1):0.05,dog:0.2);"


def _toy_hmm(models=None) -> PhyloHMM:
    params = HMMParameters.from_probabilities(
        ["neutral", "conserved"],
        [[0.9, 0.1], [0.2, 0.8]],
        state_categories=[0, 1],
    )
    if models is None:
        models = {
            0: TreeModel(NEWICK, UNIFORM),
            1: TreeModel(NEWICK, UNIFORM, scale=0.3),
        }
    return PhyloHMM(params, models=models)


def _store(ordered: bool = True) -> TupleStore:
    aln = Alignment(
        names=["human", "mouse", "dog"],
        rows=["ACGTACGTAC", "ACGT--GTAC", "ACGTACGTAA"],
    )
    return TupleStore.build(aln, ordered=ordered)


def test_tuple_wise_scores_one_column_per_tuple():
    """Test the tuple-wise buffer shape and mode."""
    store = _store()
    cache = EmissionCache.from_hmm(_toy_hmm(), store)
    assert cache.mode == "tuple"
    assert cache.tuple_scores.shape == (2, store.ntuples)
    assert cache.position_scores is None
    assert np.all(cache.tuple_scores <= 0.0)


def test_conserved_model_favors_identical_columns():
    """Test that the slower model scores an invariant column higher."""
    store = _store()
    cache = EmissionCache.from_hmm(_toy_hmm(), store)
    invariant = store.tuple_idx[0]
    assert cache.tuple_scores[1, invariant] > cache.tuple_scores[0, invariant]


def test_shared_model_gives_identical_rows():
    """Test that states sharing a model and strand share scores."""
    model = TreeModel(NEWICK, UNIFORM)
    cache = EmissionCache.from_hmm(_toy_hmm({0: model, 1: model}), _store())
    np.testing.assert_array_equal(cache.tuple_scores[0], cache.tuple_scores[1])


def test_materialize_position_wise_releases_tuple_buffer():
    """Test switching to position-wise scores."""
    store = _store()
    cache = EmissionCache.from_hmm(_toy_hmm(), store)
    tuple_scores = cache.tuple_scores.copy()
    position = cache.materialize_position_wise(store)
    assert cache.mode == "position"
    assert cache.tuple_scores is None
    assert position.shape == (2, store.length)
    np.testing.assert_array_equal(position[:, 3], tuple_scores[:, store.tuple_idx[3]])
    assert cache.materialize_position_wise(store) is position


def test_position_view_does_not_switch_mode():
    """Test that a position view leaves the tuple buffer live."""
    store = _store()
    cache = EmissionCache.from_hmm(_toy_hmm(), store)
    view = cache.position_view(store)
    assert view.shape == (2, 10)
    assert cache.mode == "tuple"


def test_unordered_store_cannot_be_materialized():
    """Test that position-wise scores need column order."""
    store = _store(ordered=False)
    cache = EmissionCache.from_hmm(_toy_hmm(), store)
    with pytest.raises(UnorderedAlignment):
        cache.materialize_position_wise(store)


def test_missing_model_raises():
    """Test that a state without a tree model is rejected."""
    with pytest.raises(ModelConstraintError):
        EmissionCache.from_hmm(_toy_hmm({0: TreeModel(NEWICK, UNIFORM)}), _store())


def test_model_constraints():
    """Test rejection of rate variation, higher order and non-reversible models."""
    with pytest.raises(ModelConstraintError):
        check_model_constraints([TreeModel(NEWICK, UNIFORM, nratecats=4)])
    with pytest.raises(ModelConstraintError):
        check_model_constraints([TreeModel(NEWICK, UNIFORM, order=2)])
    rates = np.full((4, 4), 1.0 / 3.0)
    np.fill_diagonal(rates, -1.0)
    rates[0, 1] += 0.5
    rates[0, 0] -= 0.5
    skewed = TreeModel(NEWICK, UNIFORM, rate_matrix=rates)
    with pytest.raises(ModelConstraintError):
        check_model_constraints([skewed], require_reversible=True)
    check_model_constraints([skewed])


def test_unmatched_leaves_are_pruned_with_warning(caplog):
    """Test that tree leaves missing from the alignment are pruned."""
    model = TreeModel("((human:0.1,mouse:0.1):0.05,(dog:0.2,cat:0.2):0.1);", UNIFORM)
    with caplog.at_level(logging.WARNING):
        EmissionCache.from_hmm(_toy_hmm({0: model, 1: model}), _store())
    assert "cat" in caplog.text
    assert "cat" not in model.leaf_names


def test_adjust_for_missing_data_copies_fallback_scores():
    """Test that reference-only columns get the fallback state's score."""
    aln = Alignment(names=["ref", "b", "c"], rows=["ACG", "NAN", "*CN"])
    store = TupleStore.build(aln)
    scores = np.array([[-1.0, -2.0, -3.0], [-4.0, -5.0, -6.0]])
    cache = EmissionCache.from_scores(scores, mode="tuple")
    adjusted = cache.adjust_for_missing_data(store, ref_index=1)
    assert adjusted == 2
    np.testing.assert_array_equal(cache.tuple_scores[1], [-1.0, -5.0, -3.0])


def test_adjust_for_missing_data_position_mode():
    """Test the adjustment on position-wise scores."""
    aln = Alignment(names=["ref", "b"], rows=["AAC", "NAN"])
    store = TupleStore.build(aln)
    scores = np.array([[-1.0, -1.0, -1.0], [-2.0, -3.0, -4.0]])
    cache = EmissionCache.from_scores(scores)
    assert cache.adjust_for_missing_data(store) == 2
    np.testing.assert_array_equal(cache.position_scores[1], [-1.0, -3.0, -1.0])


def test_block_emissions_slices_pooled_store():
    """Test that block emissions cover exactly one block."""
    one = TupleStore.build(Alignment(names=["a", "b"], rows=["ACG", "ACG"]))
    two = TupleStore.build(Alignment(names=["a", "b"], rows=["TT", "TA"]))
    pooled = TupleStore.pool([("x", one), ("y", two)])
    scores = np.arange(2 * pooled.ntuples, dtype=float).reshape(2, pooled.ntuples)
    cache = EmissionCache.from_scores(scores, mode="tuple")
    block = cache.block_emissions(pooled, pooled.blocks[1])
    assert block.shape == (2, 2)
    np.testing.assert_array_equal(block, scores[:, pooled.tuple_idx[3:5]])


def test_indel_history_counts_events():
    """Test open, no-open, extend and close counts."""
    aln = Alignment(names=["ref", "b"], rows=["AAAA", "A--A"])
    history = IndelHistory.from_store(TupleStore.build(aln), ref_index=1)
    counts = history.transition_counts()
    np.testing.assert_array_equal(
        counts,
        [[0, 1, 0, 0], [1, 0, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]],
    )


def test_indel_history_restarts_at_block_boundaries():
    """Test that a gap at the end of one block does not extend into the next."""
    x = TupleStore.build(Alignment(names=["ref", "b"], rows=["AA", "A-"]))
    y = TupleStore.build(Alignment(names=["ref", "b"], rows=["AA", "-A"]))
    pooled = TupleStore.pool([("x", x), ("y", y)])
    history = IndelHistory.from_store(pooled, ref_index=1)
    assert history.block_starts == (0, 2)
    np.testing.assert_array_equal(
        history.transition_counts(),
        [[0, 1, 1, 0], [1, 0, 0, 0], [0, 0, 0, 0], [0, 0, 0, 1]],
    )


def test_apply_indel_model_adds_log_probs():
    """Test that indel scores are added to position-wise emissions."""
    aln = Alignment(names=["ref", "b"], rows=["AAAA", "A--A"])
    store = TupleStore.build(aln)
    history = IndelHistory.from_store(store, ref_index=1)
    model = IndelModel(open_probs=[0.1, 0.01], extend_probs=[0.5, 0.5])
    cache = EmissionCache.from_scores(np.zeros((2, 4)))
    cache.apply_indel_model(model, history)
    assert cache.position_scores[0, 1] == pytest.approx(np.log(0.1))
    assert cache.position_scores[1, 1] == pytest.approx(np.log(0.01))
    assert cache.position_scores[0, 0] == pytest.approx(np.log(0.9))

    tuple_cache = EmissionCache.from_scores(np.zeros((2, store.ntuples)), mode="tuple")
    with pytest.raises(ValueError):
        tuple_cache.apply_indel_model(model, history)


def test_indel_model_validation():
    """Test that indel probabilities must lie strictly between 0 and 1."""
    with pytest.raises(ValueError):
        IndelModel(open_probs=[0.0], extend_probs=[0.5])
    with pytest.raises(ValueError):
        IndelModel(open_probs=[0.1, 0.2], extend_probs=[0.5])
