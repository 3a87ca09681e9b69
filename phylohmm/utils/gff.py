"""Minimal GFF reader and writer for Feature records."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Iterable, List, TextIO, Union

from phylohmm.errors import InputFormatError
from phylohmm.types.features import Feature

_GTF_ATTR = re.compile(r'\s*(\S+)\s+"([^"]*)"\s*')


def _parse_attributes(text: str) -> Dict[str, str]:
    """Parse GTF (``key "value";``) or GFF3 (``key=value;``) attributes."""
    attributes: Dict[str, str] = {}
    text = text.strip()
    if not text or text == ".":
        return attributes
    for part in text.split(";"):
        part = part.strip()
        if not part:
            continue
        match = _GTF_ATTR.fullmatch(part)
        if match:
            attributes[match.group(1)] = match.group(2)
        elif "=" in part:
            key, value = part.split("=", 1)
            attributes[key.strip()] = value.strip()
        else:
            key, _, value = part.partition(" ")
            attributes[key] = value.strip().strip('"')
    return attributes


def _format_attributes(attributes: Dict[str, str]) -> str:
    if not attributes:
        return "."
    return " ".join(f'{key} "{value}";' for key, value in attributes.items())


def parse_gff_line(line: str, lineno: int = 0) -> Feature:
    fields = line.rstrip("\n").split("\t")
    if len(fields) < 8:
        raise InputFormatError(f"line {lineno}: expected at least 8 tab-separated fields")
    try:
        start, end = int(fields[3]), int(fields[4])
        score = None if fields[5] == "." else float(fields[5])
        frame = None if fields[7] == "." else int(fields[7])
        return Feature(
            seqname=fields[0],
            source=fields[1],
            feature=fields[2],
            start=start,
            end=end,
            score=score,
            strand=fields[6],
            frame=frame,
            attributes=_parse_attributes(fields[8]) if len(fields) > 8 else {},
        )
    except ValueError as exc:
        raise InputFormatError(f"line {lineno}: {exc}") from exc


def read_gff(source: Union[str, Path, TextIO]) -> List[Feature]:
    """Read features, skipping blank and comment lines."""
    if isinstance(source, (str, Path)):
        with Path(source).open("r", encoding="utf-8") as handle:
            return read_gff(handle)
    features: List[Feature] = []
    for lineno, line in enumerate(source, start=1):
        if not line.strip() or line.startswith("#"):
            continue
        features.append(parse_gff_line(line, lineno))
    return features


def format_feature(feat: Feature) -> str:
    score = "." if feat.score is None else f"{feat.score:.3f}"
    frame = "." if feat.frame is None else str(feat.frame)
    return "\t".join(
        [
            feat.seqname,
            feat.source,
            feat.feature,
            str(feat.start),
            str(feat.end),
            score,
            feat.strand,
            frame,
            _format_attributes(feat.attributes),
        ]
    )


def write_gff(features: Iterable[Feature], target: Union[str, Path, TextIO]) -> None:
    if isinstance(target, (str, Path)):
        with Path(target).open("w", encoding="utf-8") as handle:
            write_gff(features, handle)
        return
    for feat in features:
        target.write(format_feature(feat) + "\n")


__all__ = ["read_gff", "write_gff", "parse_gff_line", "format_feature"]
