"""Per-state emission log-probabilities of an alignment.

The cache holds exactly one materialization at a time: either one score per
(state, distinct tuple) or one per (state, alignment column). Switching to
the position-wise form releases the tuple-wise buffer first.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Literal, Optional, Tuple

import numpy as np

from phylohmm.emissions.indel import IndelHistory, IndelModel
from phylohmm.emissions.tree_model import default_likelihood_fn
from phylohmm.errors import ModelConstraintError
from phylohmm.stats.tuple_store import Block, TupleStore

if TYPE_CHECKING:
    from phylohmm.algorithms.hmm import PhyloHMM

logger = logging.getLogger(__name__)

EmissionMode = Literal["tuple", "position"]
LikelihoodFn = Callable[[Any, Tuple[str, ...], Any, bool], float]


def check_model_constraints(models: Iterable[Any], require_reversible: bool = False) -> None:
    """Reject models the emission layer cannot use.

    Rate variation and higher-order models are always rejected. A
    non-reversible model is rejected only when reversibility is required.
    """
    for model in models:
        if getattr(model, "nratecats", 1) > 1:
            raise ModelConstraintError("rate variation not supported")
        if getattr(model, "order", 0) > 0:
            raise ModelConstraintError("only single nucleotide models are supported")
        if not model.is_reversible():
            if require_reversible:
                raise ModelConstraintError("reversible input model required")
            logger.warning("non-reversible model")


class EmissionCache:
    """Emission scores of one decoding run.

    Attributes:
        nstates: Number of hidden states (rows of either buffer).
        tuple_scores: nstates x ntuples buffer, live in ``tuple`` mode.
        position_scores: nstates x length buffer, live in ``position`` mode.
        mode: Which buffer is live, or None before computation.
    """

    def __init__(self, nstates: int) -> None:
        if nstates < 1:
            raise ValueError(f"nstates must be >= 1, got {nstates}")
        self.nstates = nstates
        self.tuple_scores: Optional[np.ndarray] = None
        self.position_scores: Optional[np.ndarray] = None
        self.mode: Optional[EmissionMode] = None

    @classmethod
    def from_hmm(
        cls,
        hmm: PhyloHMM,
        store: TupleStore,
        likelihood_fn: LikelihoodFn = default_likelihood_fn,
        require_reversible: bool = False,
    ) -> "EmissionCache":
        cache = cls(hmm.nstates)
        cache.compute_tuple_wise(hmm, store, likelihood_fn, require_reversible)
        return cache

    @classmethod
    def from_scores(cls, scores: np.ndarray, mode: EmissionMode = "position") -> "EmissionCache":
        """Wrap precomputed log-probabilities (nstates x M)."""
        scores = np.asarray(scores, dtype=float)
        if scores.ndim != 2:
            raise ValueError("emission scores must be a 2-d array")
        cache = cls(scores.shape[0])
        if mode == "tuple":
            cache.tuple_scores = scores
        else:
            cache.position_scores = scores
        cache.mode = mode
        return cache

    def compute_tuple_wise(
        self,
        hmm: PhyloHMM,
        store: TupleStore,
        likelihood_fn: LikelihoodFn = default_likelihood_fn,
        require_reversible: bool = False,
    ) -> None:
        """Score every distinct tuple once per distinct (model, strand) pair."""
        if hmm.nstates != self.nstates:
            raise ValueError(f"cache has {self.nstates} states, HMM has {hmm.nstates}")

        categories = sorted({hmm.state_category(s) for s in range(hmm.nstates)})
        models = {cat: hmm.models[cat] for cat in categories if cat in hmm.models}
        missing = [cat for cat in categories if cat not in models]
        if missing:
            raise ModelConstraintError(f"no tree model for categories {missing}")
        distinct_models = list({id(m): m for m in models.values()}.values())
        check_model_constraints(distinct_models, require_reversible)

        for model in distinct_models:
            pruned = model.prune(store.names)
            if pruned:
                logger.warning(
                    "pruned away leaves of tree with no match in alignment (%s)",
                    ", ".join(pruned),
                )

        self.position_scores = None
        self.tuple_scores = np.empty((self.nstates, store.ntuples))
        logger.info(
            "computing emissions for %d states over %d tuples", self.nstates, store.ntuples
        )
        rows: Dict[Tuple[int, str], np.ndarray] = {}
        for state in range(self.nstates):
            cat = hmm.state_category(state)
            strand = hmm.state_strand(state)
            key = (id(models[cat]), strand)
            if key not in rows:
                rows[key] = np.array(
                    [
                        likelihood_fn(models[cat], store.patterns[t], store.names, strand == "-")
                        for t in range(store.ntuples)
                    ],
                    dtype=float,
                )
            self.tuple_scores[state] = rows[key]
        self.mode = "tuple"

    def materialize_position_wise(self, store: TupleStore) -> np.ndarray:
        """Expand tuple-wise scores along the store's column order."""
        tuple_idx = store.require_ordered("position-wise emissions")
        if self.mode == "position":
            return self.position_scores
        if self.mode is None:
            raise ValueError("emissions have not been computed")
        tuple_scores = self.tuple_scores
        self.tuple_scores = None
        self.position_scores = tuple_scores[:, tuple_idx]
        self.mode = "position"
        return self.position_scores

    def prepare_for_decoding(self, store: TupleStore) -> None:
        """Switch to position mode when the store holds a single block.

        Block views of a single-block store would copy the whole alignment
        while the tuple buffer stays live. Pooled stores stay tuple-wise.
        """
        if self.mode == "tuple" and len(store.blocks) == 1:
            self.materialize_position_wise(store)

    def position_view(self, store: TupleStore) -> np.ndarray:
        """Position-wise scores without changing the live representation."""
        if self.mode == "position":
            return self.position_scores
        if self.mode is None:
            raise ValueError("emissions have not been computed")
        return self.tuple_scores[:, store.require_ordered("position-wise emissions")]

    def block_emissions(self, store: TupleStore, block: Block) -> np.ndarray:
        """Transient nstates x block.length view of one block."""
        if self.mode == "position":
            return self.position_scores[:, block.start : block.end]
        if self.mode is None:
            raise ValueError("emissions have not been computed")
        tuple_idx = store.require_ordered("block emissions")
        return self.tuple_scores[:, tuple_idx[block.start : block.end]]

    def adjust_for_missing_data(
        self, store: TupleStore, ref_index: int = 1, fallback: Optional[int] = None
    ) -> int:
        """Give every state the fallback state's score where only the reference has data.

        ``ref_index`` is 1-based; the fallback defaults to state 0. Returns the
        number of adjusted tuples (tuple mode) or columns (position mode).
        """
        fallback = 0 if fallback is None else fallback
        if not 0 <= fallback < self.nstates:
            raise ValueError(f"fallback state {fallback} out of range")
        missing = np.array(
            [store.all_missing_except(t, ref_index) for t in range(store.ntuples)],
            dtype=bool,
        )
        if self.mode == "tuple":
            targets = np.flatnonzero(missing)
            self.tuple_scores[:, targets] = self.tuple_scores[fallback, targets]
        elif self.mode == "position":
            tuple_idx = store.require_ordered("position-wise adjustment")
            targets = np.flatnonzero(missing[tuple_idx])
            self.position_scores[:, targets] = self.position_scores[fallback, targets]
        else:
            raise ValueError("emissions have not been computed")
        return len(targets)

    def apply_indel_model(self, indel_model: IndelModel, history: IndelHistory) -> None:
        """Add each state's indel log-probability to its position-wise scores."""
        if self.mode != "position":
            raise ValueError("indel scores require position-wise emissions")
        if indel_model.nstates != self.nstates:
            raise ValueError(
                f"indel model has {indel_model.nstates} states, cache has {self.nstates}"
            )
        if history.length != self.position_scores.shape[1]:
            raise ValueError("indel history length does not match the emissions")
        self.position_scores = self.position_scores + indel_model.log_probs(history)


__all__ = ["EmissionCache", "check_model_constraints", "EmissionMode"]
