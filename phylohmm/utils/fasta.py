"""Functions for working with FASTA alignments."""

from pathlib import Path
from typing import List, Optional, Union

import skbio.io
from skbio import Sequence

from phylohmm.errors import InputFormatError
from phylohmm.types.alignment import Alignment, DEFAULT_ALPHABET, DEFAULT_MISSING


def read_alignment_fasta(
    file_path: Union[str, Path],
    alphabet: str = DEFAULT_ALPHABET,
    missing: str = DEFAULT_MISSING,
    ids: Optional[List[str]] = None,
) -> Alignment:
    """Read an aligned FASTA file into an Alignment.

    Character normalization (case, '.', unknown letters) is applied by
    Alignment itself.
    """
    names: List[str] = []
    rows: List[str] = []
    for record in skbio.io.read(str(file_path), format="fasta", constructor=Sequence):
        identifier = record.metadata.get("id") or ""
        if ids and identifier not in ids:
            continue
        names.append(identifier)
        rows.append(str(record))
    if not rows:
        raise InputFormatError(f"no sequences read from {file_path}")
    return Alignment(names=names, rows=rows, alphabet=alphabet, missing=missing)


def write_alignment_fasta(alignment: Alignment, file_path: Union[str, Path]) -> None:
    records = (
        Sequence(row, metadata={"id": name, "description": ""})
        for name, row in zip(alignment.names, alignment.rows)
    )
    skbio.io.write(records, format="fasta", into=str(file_path))


__all__ = ["read_alignment_fasta", "write_alignment_fasta"]
