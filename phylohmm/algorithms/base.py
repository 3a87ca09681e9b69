"""Shared interface and registry of decoding strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Type

from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.emissions.cache import EmissionCache
from phylohmm.errors import ConfigError
from phylohmm.stats.tuple_store import TupleStore

_DECODERS: Dict[str, Type["Decoder"]] = {}


class Decoder(ABC):
    """Abstract base class for decoding strategies."""

    @abstractmethod
    def compute_result(
        self,
        hmm: PhyloHMM,
        emissions: EmissionCache,
        store: TupleStore,
    ) -> Any:
        """Decode the columns of ``store`` using the provided emissions."""
        raise NotImplementedError


def register_decoder(mode: str) -> Callable[[Type[Decoder]], Type[Decoder]]:
    def _register(cls: Type[Decoder]) -> Type[Decoder]:
        _DECODERS[mode] = cls
        return cls

    return _register


def get_decoder(mode: str, **options: Any) -> Decoder:
    """Instantiate the decoder registered for ``mode``."""
    try:
        cls = _DECODERS[mode]
    except KeyError:
        raise ConfigError(
            f"unknown decoding mode '{mode}'; expected one of {sorted(_DECODERS)}"
        ) from None
    return cls(**options)


def available_modes() -> list:
    return sorted(_DECODERS)


__all__ = ["Decoder", "register_decoder", "get_decoder", "available_modes"]
