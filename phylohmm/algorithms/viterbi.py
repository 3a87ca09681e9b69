"""Viterbi decoding of a phylo-HMM over an ordered alignment."""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from phylohmm.algorithms.base import Decoder, register_decoder
from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.emissions.cache import EmissionCache
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.results import ViterbiResult

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")


def viterbi_path(
    log_initial: np.ndarray, log_transitions: np.ndarray, emissions: np.ndarray
) -> Tuple[np.ndarray, float]:
    """Most probable state path for an nstates x length emission matrix.

    Ties are broken in favour of the lowest state index, both when choosing
    a predecessor and when choosing the final state.
    """
    nstates, length = emissions.shape
    if length == 0:
        return np.zeros(0, dtype=int), 0.0

    backpointers = np.zeros((length, nstates), dtype=int)
    scores = log_initial + emissions[:, 0]
    columns = np.arange(nstates)
    for t in range(1, length):
        candidates = scores[:, None] + log_transitions
        # argmax returns the first maximum, i.e. the lowest state index
        best_prev = np.argmax(candidates, axis=0)
        backpointers[t] = best_prev
        scores = candidates[best_prev, columns] + emissions[:, t]

    last = int(np.argmax(scores))
    log_prob = float(scores[last])

    path = np.zeros(length, dtype=int)
    path[-1] = last
    for t in range(length - 1, 0, -1):
        path[t - 1] = backpointers[t, path[t]]
    return path, log_prob


@register_decoder("viterbi")
class ViterbiDecoder(Decoder):
    """Maximum a posteriori state path using the Viterbi algorithm."""

    def compute_result(
        self,
        hmm: PhyloHMM,
        emissions: EmissionCache,
        store: TupleStore,
    ) -> ViterbiResult:
        """Decode each block of the store and join the paths."""
        logger.info("executing Viterbi algorithm over %d blocks", len(store.blocks))
        emissions.prepare_for_decoding(store)
        paths = []
        log_prob = 0.0
        for block in store.blocks:
            block_path, block_prob = viterbi_path(
                hmm.log_initial,
                hmm.log_transitions,
                emissions.block_emissions(store, block),
            )
            paths.append(block_path)
            log_prob += block_prob
        if log_prob == NEG_INF:
            logger.warning("no state path has non-zero probability")
        path = np.concatenate(paths) if paths else np.zeros(0, dtype=int)
        return ViterbiResult(path=path, log_prob=log_prob)


__all__ = ["ViterbiDecoder", "viterbi_path"]
