"""Emission layer: tree likelihoods turned into per-state scores."""

from .cache import EmissionCache, check_model_constraints
from .indel import IndelHistory, IndelModel
from .tree_model import TreeModel, default_likelihood_fn, parse_newick


__all__ = [
    "EmissionCache",
    "check_model_constraints",
    "IndelHistory",
    "IndelModel",
    "TreeModel",
    "default_likelihood_fn",
    "parse_newick",
]
