"""Result types produced by the decoders."""

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class ViterbiResult:
    """Most probable state path.

    Attributes:
        path: 0-based state index per column.
        log_prob: Joint log-probability of the path and the data.
    """

    path: np.ndarray
    log_prob: float


@dataclass(frozen=True)
class PosteriorResult:
    """Forward/backward statistics of a sequence of columns.

    Attributes:
        log_likelihood: Log-probability of the data summed over all paths.
        posteriors: nstates x length matrix of posterior state probabilities.
        forward: Optional log-space forward matrix (nstates x length).
        backward: Optional log-space backward matrix (nstates x length).
    """

    log_likelihood: float
    posteriors: np.ndarray
    forward: Optional[np.ndarray] = None
    backward: Optional[np.ndarray] = None

    @property
    def length(self) -> int:
        return self.posteriors.shape[1]


@dataclass(frozen=True)
class FeatureStatistics:
    """Posterior and prior moments of the number of columns in selected states.

    ``p_conserved`` is the one-sided p-value of observing at least the
    posterior mean under the prior; ``p_accelerated`` of at most.
    """

    start: int
    end: int
    post_mean: float
    post_var: float
    prior_mean: float
    prior_var: float
    p_conserved: float
    p_accelerated: float


__all__ = ["ViterbiResult", "PosteriorResult", "FeatureStatistics"]
