"""Unit tests for the reference tree-likelihood model."""

from __future__ import annotations

import math

import numpy as np
import pytest

from phylohmm.emissions.tree_model import TreeModel, default_likelihood_fn, parse_newick
from phylohmm.errors import InputFormatError

UNIFORM = [0.25, 0.25, 0.25, 0.25]


def _jc_probs(t: float):
    decay = math.exp(-4.0 * t / 3.0)
    return 0.25 + 0.75 * decay, 0.25 - 0.25 * decay


def _jc_rate_matrix() -> np.ndarray:
    rates = np.full((4, 4), 1.0 / 3.0)
    np.fill_diagonal(rates, -1.0)
    return rates


def test_parse_newick_accepts_missing_semicolon():
    """Test that a Newick string without ';' is still parsed."""
    tree = parse_newick("(a:0.1,b:0.2)")
    assert sorted(tip.name for tip in tree.tips()) == ["a", "b"]


def test_transition_matrix_rows_sum_to_one():
    """Test that F81 transition probabilities are distributions."""
    model = TreeModel("(a:0.1,b:0.2);", [0.1, 0.2, 0.3, 0.4])
    probs = model.transition_matrix(0.3)
    np.testing.assert_allclose(probs.sum(axis=1), np.ones(4))
    assert np.all(probs >= 0)


def test_rate_matrix_matches_f81_under_uniform_frequencies():
    """Test that an explicit JC rate matrix agrees with the F81 default."""
    f81 = TreeModel("(a:0.1,b:0.2);", UNIFORM)
    jc = TreeModel("(a:0.1,b:0.2);", UNIFORM, rate_matrix=_jc_rate_matrix())
    np.testing.assert_allclose(f81.transition_matrix(0.5), jc.transition_matrix(0.5), atol=1e-10)


def test_two_leaf_column_likelihood():
    """Test the pruning result against the closed-form two-leaf likelihood."""
    model = TreeModel("(a:0.1,b:0.1);", UNIFORM)
    same, diff = _jc_probs(0.1)
    expected_aa = 0.25 * (same**2 + 3 * diff**2)
    expected_ac = 0.25 * (2 * same * diff + 2 * diff**2)
    assert math.isclose(
        model.column_log_likelihood("AA", ["a", "b"]), math.log(expected_aa), rel_tol=1e-9
    )
    assert math.isclose(
        model.column_log_likelihood("AC", ["a", "b"]), math.log(expected_ac), rel_tol=1e-9
    )


def test_gaps_are_marginalized_or_forbidden():
    """Test gap handling with and without allow_gaps."""
    model = TreeModel("(a:0.1,b:0.1);", UNIFORM)
    assert math.isclose(model.column_log_likelihood("A-", ["a", "b"]), math.log(0.25))
    assert math.isclose(model.column_log_likelihood("NN", ["a", "b"]), 0.0, abs_tol=1e-12)
    strict = TreeModel("(a:0.1,b:0.1);", UNIFORM, allow_gaps=False)
    assert strict.column_log_likelihood("A-", ["a", "b"]) == float("-inf")


def test_reverse_strand_scores_complemented_column():
    """Test that reverse-strand scoring equals scoring the complement."""
    model = TreeModel("((a:0.1,b:0.2):0.05,c:0.3);", [0.1, 0.2, 0.3, 0.4])
    names = ["a", "b", "c"]
    assert math.isclose(
        model.column_log_likelihood("ACG", names, reverse_strand=True),
        model.column_log_likelihood("TGC", names),
    )


def test_scale_changes_likelihood():
    """Test that scaling branch lengths changes column likelihoods."""
    slow = TreeModel("(a:0.1,b:0.1);", UNIFORM)
    fast = TreeModel("(a:0.1,b:0.1);", UNIFORM, scale=3.0)
    assert fast.column_log_likelihood("AA", ["a", "b"]) < slow.column_log_likelihood(
        "AA", ["a", "b"]
    )


def test_prune_removes_unmatched_leaves():
    """Test pruning leaves absent from the alignment."""
    model = TreeModel("((a:0.1,b:0.1):0.1,c:0.2);", UNIFORM)
    pruned = model.prune(["a", "b", "x"])
    assert pruned == ["c"]
    assert sorted(model.leaf_names) == ["a", "b"]
    assert model.prune(["a", "b"]) == []


def test_prune_without_any_match_raises():
    """Test that a tree sharing no leaves with the alignment is rejected."""
    model = TreeModel("(a:0.1,b:0.1);", UNIFORM)
    with pytest.raises(InputFormatError):
        model.prune(["x", "y"])


def test_reversibility_check():
    """Test detection of non-reversible rate matrices."""
    assert TreeModel("(a:0.1,b:0.1);", UNIFORM, rate_matrix=_jc_rate_matrix()).is_reversible()
    skewed = _jc_rate_matrix()
    skewed[0, 1] += 0.5
    skewed[0, 0] -= 0.5
    assert not TreeModel("(a:0.1,b:0.1);", UNIFORM, rate_matrix=skewed).is_reversible()


def test_invalid_frequencies_raise():
    """Test validation of background frequencies and scale."""
    with pytest.raises(ValueError):
        TreeModel("(a:0.1,b:0.1);", [0.5, 0.5, 0.5, 0.5])
    with pytest.raises(ValueError):
        TreeModel("(a:0.1,b:0.1);", [0.5, 0.5])
    with pytest.raises(ValueError):
        TreeModel("(a:0.1,b:0.1);", UNIFORM, scale=0.0)


def test_default_likelihood_fn_scores_last_column():
    """Test that the default scorer uses the tuple's own column."""
    model = TreeModel("(a:0.1,b:0.1);", UNIFORM)
    assert math.isclose(
        default_likelihood_fn(model, ("AC", "AA"), ["a", "b"], False),
        model.column_log_likelihood("AA", ["a", "b"]),
    )
