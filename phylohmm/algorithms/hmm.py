"""Phylo-HMM wrapper: hidden states with per-category tree models."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

import numpy as np

from phylohmm.errors import ConfigError
from phylohmm.types.categories import CategoryMap
from phylohmm.types.parameters import HMMParameters

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")


def _log_normalize_rows(log_matrix: np.ndarray) -> np.ndarray:
    peak = np.max(log_matrix, axis=1, keepdims=True)
    peak = np.where(np.isfinite(peak), peak, 0.0)
    with np.errstate(divide="ignore"):
        norm = peak + np.log(np.exp(log_matrix - peak).sum(axis=1, keepdims=True))
    return log_matrix - norm


def _to_log(probs: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore"):
        return np.log(probs)


@dataclass(frozen=True)
class PhyloHMM:
    """HMM whose states emit through the tree model of their category."""

    params: HMMParameters
    models: Mapping[int, Any]
    category_map: CategoryMap

    def __init__(
        self,
        params: HMMParameters,
        models: Optional[Mapping[int, Any]] = None,
        category_map: Optional[CategoryMap] = None,
    ) -> None:
        if category_map is None:
            ncats = max(params.state_categories) + 1
            category_map = CategoryMap.from_names(
                ["background"] + [f"cat{i}" for i in range(1, ncats)]
            )
        out_of_map = [c for c in params.state_categories if c >= category_map.ncats]
        if out_of_map:
            raise ConfigError(
                f"states refer to categories outside the category map: {out_of_map}"
            )
        object.__setattr__(self, "params", params)
        object.__setattr__(self, "models", dict(models or {}))
        object.__setattr__(self, "category_map", category_map)

    @property
    def nstates(self) -> int:
        return self.params.nstates

    @property
    def state_names(self) -> List[str]:
        return self.params.state_names

    @property
    def log_transitions(self) -> np.ndarray:
        """Return the transition matrix in log-space."""
        return self.params.log_transitions

    @property
    def log_initial(self) -> np.ndarray:
        """Return the initial distribution in log-space."""
        return self.params.log_initial

    def log_trans(self, state_from: int, state_to: int) -> float:
        """Return the log transition probability for the given states."""
        self._assert_state(state_from, "state_from")
        self._assert_state(state_to, "state_to")
        return float(self.params.log_transitions[state_from, state_to])

    def state_category(self, state: int) -> int:
        self._assert_state(state, "state")
        return self.params.state_categories[state]

    def state_strand(self, state: int) -> str:
        self._assert_state(state, "state")
        return self.params.state_strands[state]

    def model_for_state(self, state: int) -> Any:
        cat = self.state_category(state)
        if cat not in self.models:
            raise ConfigError(f"no tree model for category {cat} (state {state})")
        return self.models[cat]

    def states_in_categories(self, categories: Sequence[int]) -> List[int]:
        wanted = set(categories)
        return [s for s in range(self.nstates) if self.params.state_categories[s] in wanted]

    def stationary_distribution(self) -> np.ndarray:
        """Stationary distribution of the transition matrix."""
        probs = np.exp(self.params.log_transitions)
        eigvals, eigvecs = np.linalg.eig(probs.T)
        idx = int(np.argmin(np.abs(eigvals - 1.0)))
        pi = np.abs(np.real(eigvecs[:, idx]))
        return pi / pi.sum()

    def reflect(self, background_states: Sequence[int]) -> "PhyloHMM":
        """Two-strand HMM obtained by mirroring the non-background states.

        Each non-background state gets a reverse-strand copy whose
        transitions follow the time-reversed chain, so a feature read on
        the minus strand visits the mirrored states in reverse order.
        Background rows split their outgoing mass evenly between the
        forward chain and the reversed one.
        """
        background = sorted(set(background_states))
        for s in background:
            self._assert_state(s, "background state")
        if "-" in self.params.state_strands:
            raise ConfigError("HMM already has reverse-strand states")
        feature_states = [s for s in range(self.nstates) if s not in background]

        P = np.exp(self.params.log_transitions)
        pi = self.stationary_distribution()
        Q = P.copy()
        for a in range(self.nstates):
            if pi[a] > 0:
                Q[a] = pi * P[:, a] / pi[a]

        order = background + feature_states
        nfeat = len(feature_states)
        n_new = len(order) + nfeat
        pos_fwd = {s: i for i, s in enumerate(order)}
        pos_rev = {s: len(order) + i for i, s in enumerate(feature_states)}

        trans = np.zeros((n_new, n_new))
        for a in background:
            for b in background:
                trans[pos_fwd[a], pos_fwd[b]] = 0.5 * (P[a, b] + Q[a, b])
            for b in feature_states:
                trans[pos_fwd[a], pos_fwd[b]] = 0.5 * P[a, b]
                trans[pos_fwd[a], pos_rev[b]] = 0.5 * Q[a, b]
        for a in feature_states:
            for b in background:
                trans[pos_fwd[a], pos_fwd[b]] = P[a, b]
                trans[pos_rev[a], pos_fwd[b]] = Q[a, b]
            for b in feature_states:
                trans[pos_fwd[a], pos_fwd[b]] = P[a, b]
                trans[pos_rev[a], pos_rev[b]] = Q[a, b]
        trans = trans / trans.sum(axis=1, keepdims=True)

        init_src = np.exp(self.params.log_initial)
        init = np.zeros(n_new)
        for s in background:
            init[pos_fwd[s]] = init_src[s]
        for s in feature_states:
            init[pos_fwd[s]] = 0.5 * init_src[s]
            init[pos_rev[s]] = 0.5 * init_src[s]
        init = init / init.sum()

        names = [self.state_names[s] for s in order] + [
            f"{self.state_names[s]}(-)" for s in feature_states
        ]
        cats = [self.params.state_categories[s] for s in order] + [
            self.params.state_categories[s] for s in feature_states
        ]
        strands = ["+"] * len(order) + ["-"] * nfeat
        params = HMMParameters(
            state_names=names,
            log_transitions=_to_log(trans),
            log_initial=_to_log(init),
            state_categories=cats,
            state_strands=strands,
        )
        logger.info("reflected %d-state HMM into %d states", self.nstates, n_new)
        return PhyloHMM(params, self.models, self.category_map)

    def add_bias(self, background_states: Sequence[int], bias: float) -> "PhyloHMM":
        """Add ``bias`` to log transitions from background to other states.

        Rows are renormalized afterwards; a positive bias favours features.
        """
        background = set(background_states)
        for s in background:
            self._assert_state(s, "background state")
        trans = self.params.log_transitions.copy()
        for a in background:
            for b in range(self.nstates):
                if b not in background:
                    trans[a, b] += bias
        params = HMMParameters(
            state_names=self.state_names,
            log_transitions=_log_normalize_rows(trans),
            log_initial=self.params.log_initial,
            state_categories=self.params.state_categories,
            state_strands=self.params.state_strands,
        )
        return PhyloHMM(params, self.models, self.category_map)

    def category_name(self, state: int) -> str:
        return self.category_map.range_of(self.state_category(state)).name

    def _assert_state(self, state: int, arg_name: str) -> None:
        if not 0 <= state < self.nstates:
            raise ValueError(
                f"{arg_name} must be in [0, {self.nstates}), got {state}"
            )


__all__ = ["PhyloHMM", "NEG_INF"]
