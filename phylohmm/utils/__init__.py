"""Utility functions for the project."""

from .fasta import read_alignment_fasta, write_alignment_fasta
from .gff import read_gff, write_gff
from .serialization import (
    load_category_map,
    load_phylo_hmm,
    phylo_hmm_to_dict,
    save_phylo_hmm,
)

__all__ = [
    "read_alignment_fasta",
    "write_alignment_fasta",
    "read_gff",
    "write_gff",
    "load_category_map",
    "load_phylo_hmm",
    "phylo_hmm_to_dict",
    "save_phylo_hmm",
]
