"""Error taxonomy shared by all phylohmm modules."""

from __future__ import annotations


class PhyloHMMError(Exception):
    """Base class for all errors raised by phylohmm."""


class ConfigError(PhyloHMMError, ValueError):
    """Missing or mutually exclusive options, detected before computation."""


class InputFormatError(PhyloHMMError, ValueError):
    """Malformed input: bad characters, unordered data, name mismatches."""


class BadAlphabet(InputFormatError):
    """A character is neither in the alphabet nor a gap/missing symbol."""


class UnorderedAlignment(InputFormatError):
    """Column order is required but the tuple index was not retained."""


class ModelConstraintError(PhyloHMMError, ValueError):
    """A tree model uses a feature the emission layer does not support."""


class CoordinateError(PhyloHMMError, ValueError):
    """A coordinate or feature cannot be mapped between frames."""


__all__ = [
    "PhyloHMMError",
    "ConfigError",
    "InputFormatError",
    "BadAlphabet",
    "UnorderedAlignment",
    "ModelConstraintError",
    "CoordinateError",
]
