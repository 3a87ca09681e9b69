"""Algorithms for the project."""

from .base import Decoder, available_modes, get_decoder
from .forward_backward import PosteriorDecoder
from .hmm import PhyloHMM
from .path_counts import PathCounts, PathKey
from .sampler import PathSampler, SamplerPhase
from .viterbi import ViterbiDecoder


__all__ = [
    "Decoder",
    "available_modes",
    "get_decoder",
    "PhyloHMM",
    "PathCounts",
    "PathKey",
    "PathSampler",
    "PosteriorDecoder",
    "SamplerPhase",
    "ViterbiDecoder",
    "forward_backward",
]
