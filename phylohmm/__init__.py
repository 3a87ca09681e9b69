"""Phylo-HMM engine: sufficient statistics, emissions, decoding and coordinate mapping."""

__version__ = "0.1.0"
