"""Sufficient statistics of alignments."""

from .tuple_store import Block, TupleStore


__all__ = ["Block", "TupleStore"]
