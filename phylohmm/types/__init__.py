"""Types for the project."""

from .alignment import Alignment, GAP_CHAR, DEFAULT_ALPHABET, DEFAULT_MISSING
from .categories import CategoryMap, CategoryRange
from .features import Feature, FeatureGroup, ALIGNMENT_SEQNAME
from .parameters import HMMParameters, SamplerConfig
from .results import FeatureStatistics, PosteriorResult, ViterbiResult


__all__ = [
    "Alignment",
    "GAP_CHAR",
    "DEFAULT_ALPHABET",
    "DEFAULT_MISSING",
    "CategoryMap",
    "CategoryRange",
    "Feature",
    "FeatureGroup",
    "ALIGNMENT_SEQNAME",
    "HMMParameters",
    "SamplerConfig",
    "FeatureStatistics",
    "PosteriorResult",
    "ViterbiResult",
]
