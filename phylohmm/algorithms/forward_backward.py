"""Forward/backward dynamic programming for the phylo-HMM.

All dynamic programming is done in LOG-SPACE. Matrices are nstates x
length; column ``t`` of the forward matrix holds log P(x_0..x_t, s_t) and
column ``t`` of the backward matrix log P(x_t+1..x_T-1 | s_t).
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence, Tuple

import numpy as np

from phylohmm.algorithms.base import Decoder, register_decoder
from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.emissions.cache import EmissionCache
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.features import Feature
from phylohmm.types.results import FeatureStatistics, PosteriorResult

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")


def logsumexp(values: Sequence[float]) -> float:
    """Compute log(sum(exp(values))) in a numerically stable way.

    Returns -inf if the list is empty or all entries are -inf.
    """
    if len(values) == 0:
        return NEG_INF
    max_val = max(values)
    if max_val == NEG_INF:
        return NEG_INF
    total = sum(math.exp(v - max_val) for v in values)
    return max_val + math.log(total)


def _logsumexp_axis(values: np.ndarray, axis: int) -> np.ndarray:
    """Vectorized logsumexp along ``axis``; all -inf slices give -inf."""
    peak = np.max(values, axis=axis, keepdims=True)
    safe_peak = np.where(np.isfinite(peak), peak, 0.0)
    with np.errstate(divide="ignore"):
        out = safe_peak + np.log(np.sum(np.exp(values - safe_peak), axis=axis, keepdims=True))
    return np.squeeze(out, axis=axis)


def forward_matrix(
    log_initial: np.ndarray, log_transitions: np.ndarray, emissions: np.ndarray
) -> Tuple[np.ndarray, float]:
    """Log-space forward matrix and total log-likelihood."""
    nstates, length = emissions.shape
    forward = np.full((nstates, length), NEG_INF)
    if length == 0:
        return forward, NEG_INF
    forward[:, 0] = log_initial + emissions[:, 0]
    for t in range(1, length):
        forward[:, t] = (
            _logsumexp_axis(forward[:, t - 1][:, None] + log_transitions, axis=0)
            + emissions[:, t]
        )
    return forward, logsumexp(list(forward[:, -1]))


def backward_matrix(
    log_initial: np.ndarray, log_transitions: np.ndarray, emissions: np.ndarray
) -> Tuple[np.ndarray, float]:
    """Log-space backward matrix and total log-likelihood."""
    nstates, length = emissions.shape
    backward = np.full((nstates, length), NEG_INF)
    if length == 0:
        return backward, NEG_INF
    backward[:, -1] = 0.0
    for t in range(length - 2, -1, -1):
        backward[:, t] = _logsumexp_axis(
            log_transitions + (emissions[:, t + 1] + backward[:, t + 1])[None, :], axis=1
        )
    log_z = logsumexp(list(log_initial + emissions[:, 0] + backward[:, 0]))
    return backward, log_z


def compute_forward(hmm: PhyloHMM, emissions: np.ndarray) -> Tuple[np.ndarray, float]:
    """Compute the forward matrix for a position-wise emission matrix."""
    return forward_matrix(hmm.log_initial, hmm.log_transitions, emissions)


def compute_backward(hmm: PhyloHMM, emissions: np.ndarray) -> Tuple[np.ndarray, float]:
    """Compute the backward matrix for a position-wise emission matrix."""
    return backward_matrix(hmm.log_initial, hmm.log_transitions, emissions)


def compute_posteriors(
    forward: np.ndarray, backward: np.ndarray, log_z: float
) -> np.ndarray:
    """Posterior state probabilities; columns sum to 1 when log_z is finite."""
    if log_z == NEG_INF:
        return np.zeros_like(forward)
    return np.exp(forward + backward - log_z)


def _normal_upper_tail(x: float, mean: float, var: float) -> float:
    if var <= 0:
        return 1.0 if x <= mean else 0.0
    return 0.5 * math.erfc((x - mean) / math.sqrt(2.0 * var))


def feature_statistics(
    result: PosteriorResult,
    features: Sequence[Feature],
    state_ids: Sequence[int],
    hmm: PhyloHMM,
) -> List[FeatureStatistics]:
    """Moments of the number of columns in ``state_ids`` inside each feature.

    Features are in the alignment frame (1-based, inclusive). Prior moments
    treat columns as independent draws from the stationary distribution.
    """
    if not state_ids:
        raise ValueError("state_ids must not be empty")
    column_mass = result.posteriors[list(state_ids)].sum(axis=0)
    prior_p = float(hmm.stationary_distribution()[list(state_ids)].sum())

    stats: List[FeatureStatistics] = []
    for feat in features:
        if feat.start < 1 or feat.end > result.length or feat.end < feat.start:
            logger.warning(
                "ignoring out-of-range feature %s %d-%d", feat.feature, feat.start, feat.end
            )
            continue
        mass = column_mass[feat.start - 1 : feat.end]
        ncols = len(mass)
        post_mean = float(mass.sum())
        post_var = float((mass * (1.0 - mass)).sum())
        prior_mean = ncols * prior_p
        prior_var = ncols * prior_p * (1.0 - prior_p)
        p_conserved = _normal_upper_tail(post_mean, prior_mean, prior_var)
        stats.append(
            FeatureStatistics(
                start=feat.start,
                end=feat.end,
                post_mean=post_mean,
                post_var=post_var,
                prior_mean=prior_mean,
                prior_var=prior_var,
                p_conserved=p_conserved,
                p_accelerated=_normal_upper_tail(-post_mean, -prior_mean, prior_var),
            )
        )
    return stats


@register_decoder("posterior")
class PosteriorDecoder(Decoder):
    """Forward/backward posterior state probabilities; no hard path."""

    def __init__(self, keep_matrices: bool = False) -> None:
        self.keep_matrices = keep_matrices

    def compute_result(
        self,
        hmm: PhyloHMM,
        emissions: EmissionCache,
        store: TupleStore,
    ) -> PosteriorResult:
        """Run forward/backward over each block and join the posteriors."""
        logger.info("computing posteriors over %d blocks", len(store.blocks))
        emissions.prepare_for_decoding(store)
        log_likelihood = 0.0
        posteriors, forwards, backwards = [], [], []
        for block in store.blocks:
            block_emissions = emissions.block_emissions(store, block)
            forward, log_z = compute_forward(hmm, block_emissions)
            backward, _ = compute_backward(hmm, block_emissions)
            posteriors.append(compute_posteriors(forward, backward, log_z))
            if self.keep_matrices:
                forwards.append(forward)
                backwards.append(backward)
            log_likelihood += log_z
        return PosteriorResult(
            log_likelihood=log_likelihood,
            posteriors=np.concatenate(posteriors, axis=1),
            forward=np.concatenate(forwards, axis=1) if forwards else None,
            backward=np.concatenate(backwards, axis=1) if backwards else None,
        )


__all__ = [
    "logsumexp",
    "forward_matrix",
    "backward_matrix",
    "compute_forward",
    "compute_backward",
    "compute_posteriors",
    "feature_statistics",
    "PosteriorDecoder",
]
