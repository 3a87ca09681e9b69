"""
This module defines the parameter containers of a phylo-HMM: the log-space
transition and initial distributions with per-state labels, and the
configuration of the stochastic path sampler. Containers are frozen and
validated on construction so misconfiguration is reported before any
computation starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from phylohmm.errors import ConfigError

STRANDS: Tuple[str, str] = ("+", "-")
ROW_SUM_TOLERANCE = 1e-6


def _validate_log_distribution(values: np.ndarray, context: str) -> None:
    if np.any(np.isnan(values)):
        raise ValueError(f"{context} contains NaN")
    if np.any(values > 1e-12):
        raise ValueError(f"{context} contains log-probabilities above 0")
    total = np.exp(values).sum()
    if abs(total - 1.0) > ROW_SUM_TOLERANCE:
        raise ValueError(f"{context} must sum to 1 in probability space, got {total}")


@dataclass(frozen=True)
class HMMParameters:
    """Log-space transition and initial distributions plus per-state labels.

    Attributes:
        state_names: One name per hidden state.
        log_transitions: nstates x nstates matrix, rows are source states.
        log_initial: Initial state distribution.
        state_categories: Category id emitted by each state.
        state_strands: Strand ('+' or '-') of each state.
    """

    state_names: List[str]
    log_transitions: np.ndarray
    log_initial: np.ndarray
    state_categories: List[int]
    state_strands: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        nstates = len(self.state_names)
        if nstates == 0:
            raise ValueError("at least one hidden state is required")
        if len(set(self.state_names)) != nstates:
            raise ValueError(f"duplicate state names: {self.state_names}")

        trans = np.asarray(self.log_transitions, dtype=float)
        if trans.shape != (nstates, nstates):
            raise ValueError(
                f"transition matrix must be {nstates}x{nstates}, got {trans.shape}"
            )
        for i in range(nstates):
            _validate_log_distribution(trans[i], f"transition[{self.state_names[i]}]")
        object.__setattr__(self, "log_transitions", trans)

        initial = np.asarray(self.log_initial, dtype=float)
        if initial.shape != (nstates,):
            raise ValueError(f"initial distribution must have {nstates} entries")
        _validate_log_distribution(initial, "initial distribution")
        object.__setattr__(self, "log_initial", initial)

        if len(self.state_categories) != nstates:
            raise ValueError("state_categories must have one entry per state")
        object.__setattr__(self, "state_categories", [int(c) for c in self.state_categories])

        strands = list(self.state_strands) or ["+"] * nstates
        if len(strands) != nstates:
            raise ValueError("state_strands must have one entry per state")
        bad = [s for s in strands if s not in STRANDS]
        if bad:
            raise ValueError(f"state strands must be one of {STRANDS}, got {bad}")
        object.__setattr__(self, "state_strands", strands)
        object.__setattr__(self, "state_names", list(self.state_names))

    @property
    def nstates(self) -> int:
        return len(self.state_names)

    @classmethod
    def from_probabilities(
        cls,
        state_names: Sequence[str],
        transitions: Sequence[Sequence[float]],
        initial: Optional[Sequence[float]] = None,
        state_categories: Optional[Sequence[int]] = None,
        state_strands: Optional[Sequence[str]] = None,
    ) -> "HMMParameters":
        """Build parameters from probability-space tables.

        Rows are normalized; a missing initial distribution is uniform and
        missing categories default to one category per state.
        """
        nstates = len(state_names)
        probs = np.asarray(transitions, dtype=float)
        if probs.ndim != 2 or probs.shape[0] != nstates:
            raise ValueError(f"transition matrix must be {nstates}x{nstates}")
        if np.any(probs < 0):
            raise ValueError("transition probabilities must be non-negative")
        probs = probs / probs.sum(axis=1, keepdims=True)
        init = (
            np.full(nstates, 1.0 / nstates)
            if initial is None
            else np.asarray(initial, dtype=float)
        )
        init = init / init.sum()
        with np.errstate(divide="ignore"):
            return cls(
                state_names=list(state_names),
                log_transitions=np.log(probs),
                log_initial=np.log(init),
                state_categories=(
                    list(range(nstates)) if state_categories is None else list(state_categories)
                ),
                state_strands=[] if state_strands is None else list(state_strands),
            )


@dataclass(frozen=True)
class SamplerConfig:
    """Options of the stochastic path sampler.

    ``force_priors`` implies ``ref_as_prior``. Both need a reference
    labelling, which is checked when sampling starts. With priors, every
    transition the HMM allows gets ``prior_pseudocount`` (1 when unset).
    """

    bsamples: int = 5000
    nsamples: int = 100000
    sample_interval: int = 1
    seed: Optional[int] = None
    ref_as_prior: bool = False
    force_priors: bool = False
    background_states: Tuple[int, ...] = (0,)
    prior_pseudocount: Optional[float] = None

    def __post_init__(self) -> None:
        if self.bsamples < 0:
            raise ConfigError(f"bsamples must be >= 0, got {self.bsamples}")
        if self.nsamples < 1:
            raise ConfigError(f"nsamples must be >= 1, got {self.nsamples}")
        if self.sample_interval < 1:
            raise ConfigError(
                f"sample_interval must be >= 1, got {self.sample_interval}"
            )
        if self.prior_pseudocount is not None and self.prior_pseudocount <= 0:
            raise ConfigError("prior_pseudocount must be positive")
        if not self.background_states:
            raise ConfigError("at least one background state is required")
        object.__setattr__(self, "background_states", tuple(self.background_states))
        if self.force_priors:
            object.__setattr__(self, "ref_as_prior", True)

    @property
    def total_iterations(self) -> int:
        """Iterations needed to retain ``nsamples`` samples after burn-in."""
        return self.bsamples + self.nsamples * self.sample_interval

    @property
    def uses_priors(self) -> bool:
        return self.ref_as_prior or self.prior_pseudocount is not None

    def is_retained(self, iteration: int) -> bool:
        """True if the 0-based ``iteration`` is kept as a sample."""
        if iteration < self.bsamples:
            return False
        return (iteration - self.bsamples + 1) % self.sample_interval == 0


__all__ = ["HMMParameters", "SamplerConfig", "STRANDS"]
