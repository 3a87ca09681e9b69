"""Stochastic path sampling over the blocks of a pooled tuple store.

Each iteration draws one state path per block by forward filtering and
stochastic traceback. After burn-in, every ``sample_interval``-th iteration
is retained and its feature runs are counted. With transition priors the
transition matrix is redrawn from its Dirichlet posterior after each
iteration.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import numpy as np

from phylohmm.algorithms.base import Decoder, register_decoder
from phylohmm.algorithms.forward_backward import forward_matrix
from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.algorithms.path_counts import PathCounts
from phylohmm.emissions.cache import EmissionCache
from phylohmm.errors import ConfigError, InputFormatError
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.parameters import SamplerConfig

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")

# Transition pseudo-count used with priors when none is configured
DEFAULT_PSEUDOCOUNT = 1.0


class SamplerPhase(Enum):
    UNINITIALIZED = "uninitialized"
    BURN_IN = "burn-in"
    SAMPLING = "sampling"
    DONE = "done"


def _normalized_probs(log_weights: np.ndarray) -> np.ndarray:
    peak = np.max(log_weights)
    if peak == NEG_INF:
        raise ValueError("cannot sample from a distribution with zero mass")
    weights = np.exp(log_weights - peak)
    return weights / weights.sum()


def stochastic_traceback(
    forward: np.ndarray, log_transitions: np.ndarray, rng: np.random.Generator
) -> np.ndarray:
    """Draw one state path from its posterior given a forward matrix."""
    nstates, length = forward.shape
    path = np.zeros(length, dtype=int)
    if length == 0:
        return path
    path[-1] = rng.choice(nstates, p=_normalized_probs(forward[:, -1]))
    for t in range(length - 2, -1, -1):
        path[t] = rng.choice(
            nstates, p=_normalized_probs(forward[:, t] + log_transitions[:, path[t + 1]])
        )
    return path


def transition_counts(path: Sequence[int], nstates: int) -> np.ndarray:
    """Transition counts of a path; negative (unlabelled) entries are skipped."""
    counts = np.zeros((nstates, nstates), dtype=float)
    path = np.asarray(path, dtype=int)
    if len(path) > 1:
        src, dst = path[:-1], path[1:]
        valid = (src >= 0) & (dst >= 0)
        np.add.at(counts, (src[valid], dst[valid]), 1.0)
    return counts


def _redraw_transitions(
    rng: np.random.Generator, alpha: np.ndarray, current: np.ndarray
) -> np.ndarray:
    """Draw a log transition matrix from Dirichlet(alpha), row by row.

    Entries with zero weight stay at probability zero; a row without any
    weight keeps its current value.
    """
    redrawn = current.copy()
    for row in range(alpha.shape[0]):
        support = np.flatnonzero(alpha[row] > 0)
        if len(support) == 0:
            continue
        probs = np.zeros(alpha.shape[1])
        probs[support] = rng.dirichlet(alpha[row, support])
        with np.errstate(divide="ignore"):
            redrawn[row] = np.log(probs)
    return redrawn


@register_decoder("sample")
class PathSampler(Decoder):
    """Stochastic traceback sampler aggregating feature-run counts.

    Args:
        config: Sampling options.
        reference_paths: Optional reference labelling, one state path per
            block name; required by ``ref_as_prior`` and ``force_priors``.
        prior_counts: Optional nstates x nstates transition pseudo-counts,
            added to the per-transition ``prior_pseudocount`` of the config.
        precomputed: Path of persisted counts to load instead of sampling.
    """

    def __init__(
        self,
        config: Optional[SamplerConfig] = None,
        reference_paths: Optional[Mapping[str, Sequence[int]]] = None,
        prior_counts: Optional[np.ndarray] = None,
        precomputed: Optional[Union[str, Path]] = None,
    ) -> None:
        self.config = config or SamplerConfig()
        if self.config.ref_as_prior and reference_paths is None and precomputed is None:
            option = "force_priors" if self.config.force_priors else "ref_as_prior"
            raise ConfigError(f"{option} requires a reference labelling")
        self.reference_paths = (
            None
            if reference_paths is None
            else {name: np.asarray(p, dtype=int) for name, p in reference_paths.items()}
        )
        self.prior_counts = None if prior_counts is None else np.asarray(prior_counts, dtype=float)
        self.precomputed = precomputed
        self.phase = SamplerPhase.UNINITIALIZED

    def _set_phase(self, phase: SamplerPhase) -> None:
        if phase != self.phase:
            logger.info("sampler phase: %s", phase.value)
            self.phase = phase

    def _prior_matrix(self, hmm: PhyloHMM, store: TupleStore) -> Optional[np.ndarray]:
        """Dirichlet prior of the transition rows, or None without priors.

        Every transition the HMM allows gets the pseudo-count, so a redraw
        never rules it out for good.
        """
        if self.prior_counts is None and not self.config.uses_priors:
            return None
        nstates = hmm.nstates
        prior = np.zeros((nstates, nstates))
        if self.prior_counts is not None:
            if self.prior_counts.shape != (nstates, nstates):
                raise ConfigError(f"prior_counts must be {nstates}x{nstates}")
            prior += self.prior_counts
        pseudocount = self.config.prior_pseudocount
        if pseudocount is None:
            pseudocount = DEFAULT_PSEUDOCOUNT
        prior[np.isfinite(hmm.log_transitions)] += pseudocount
        if self.config.ref_as_prior:
            for block in store.blocks:
                prior += transition_counts(self._reference_for(block.name, block.length), nstates)
        return prior

    def _reference_for(self, block_name: str, length: int) -> np.ndarray:
        ref = self.reference_paths.get(block_name)
        if ref is None:
            raise ConfigError(f"no reference labelling for block '{block_name}'")
        if len(ref) != length:
            raise InputFormatError(
                f"reference labelling of block '{block_name}' has {len(ref)} "
                f"columns, expected {length}"
            )
        return ref

    def _forced(self, emissions: np.ndarray, reference: np.ndarray) -> np.ndarray:
        """Pin every annotated (non-background) column to its reference state."""
        forced = emissions.copy()
        background = set(self.config.background_states)
        for pos, state in enumerate(reference):
            if state < 0 or int(state) in background:
                continue
            keep = forced[state, pos]
            forced[:, pos] = NEG_INF
            forced[state, pos] = keep
        return forced

    def compute_result(
        self,
        hmm: PhyloHMM,
        emissions: EmissionCache,
        store: TupleStore,
    ) -> PathCounts:
        """Sample paths for every block and aggregate retained feature runs."""
        if self.precomputed is not None:
            logger.info("reading sampling data from %s", self.precomputed)
            counts = PathCounts.read(self.precomputed, nstates=hmm.nstates)
            self._set_phase(SamplerPhase.DONE)
            return counts

        config = self.config
        bad = [s for s in config.background_states if not 0 <= s < hmm.nstates]
        if bad:
            raise ConfigError(f"background states out of range: {bad}")

        rng = np.random.default_rng(config.seed)
        prior = self._prior_matrix(hmm, store)
        log_trans = hmm.log_transitions.copy()
        counts = PathCounts(hmm.nstates)

        logger.info(
            "sampling state paths: %d burn-in, %d samples every %d iterations, %d blocks",
            config.bsamples,
            config.nsamples,
            config.sample_interval,
            len(store.blocks),
        )
        for iteration in range(config.total_iterations):
            retained = config.is_retained(iteration)
            self._set_phase(
                SamplerPhase.BURN_IN if iteration < config.bsamples else SamplerPhase.SAMPLING
            )
            iteration_counts = np.zeros((hmm.nstates, hmm.nstates))
            for block in store.blocks:
                block_emissions = emissions.block_emissions(store, block)
                if config.force_priors:
                    block_emissions = self._forced(
                        block_emissions, self._reference_for(block.name, block.length)
                    )
                forward, log_z = forward_matrix(hmm.log_initial, log_trans, block_emissions)
                if log_z == NEG_INF:
                    raise ValueError(f"block '{block.name}' has probability zero")
                path = stochastic_traceback(forward, log_trans, rng)
                if retained:
                    counts.add_path(block.name, path, config.background_states)
                if prior is not None:
                    iteration_counts += transition_counts(path, hmm.nstates)
            if retained:
                counts.nsamples += 1
            if prior is not None:
                log_trans = _redraw_transitions(rng, prior + iteration_counts, log_trans)

        self._set_phase(SamplerPhase.DONE)
        logger.info("retained %d samples, %d distinct feature runs", counts.nsamples, len(counts))
        return counts


__all__ = [
    "PathSampler",
    "SamplerPhase",
    "stochastic_traceback",
    "transition_counts",
]
