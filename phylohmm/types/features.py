"""Feature records exchanged with the GFF collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

ALIGNMENT_SEQNAME = "MSA"


@dataclass(frozen=True)
class Feature:
    """A GFF-style feature with 1-based, inclusive coordinates.

    The coordinate frame is named by ``seqname``: ``MSA`` for the frame of
    the whole alignment, otherwise the name of a sequence in it.
    """

    seqname: str
    source: str
    feature: str
    start: int
    end: int
    score: Optional[float] = None
    strand: str = "."
    frame: Optional[int] = None
    attributes: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.strand not in ("+", "-", "."):
            raise ValueError(f"strand must be '+', '-' or '.', got '{self.strand}'")
        if self.frame is not None and self.frame not in (0, 1, 2):
            raise ValueError(f"frame must be 0, 1 or 2, got {self.frame}")

    @property
    def span(self) -> int:
        return self.end - self.start

    def group_id(self, tag: str) -> Optional[str]:
        return self.attributes.get(tag)


@dataclass(frozen=True)
class FeatureGroup:
    """Features sharing a value of a grouping attribute (e.g. ``exon_id``)."""

    group_id: str
    features: List[Feature]

    @property
    def start(self) -> int:
        return min(f.start for f in self.features)

    @property
    def end(self) -> int:
        return max(f.end for f in self.features)

    @property
    def strand(self) -> str:
        strands = {f.strand for f in self.features}
        return strands.pop() if len(strands) == 1 else "."


def group_features(features: Sequence[Feature], tag: str) -> List[FeatureGroup]:
    """Group features by attribute ``tag``; ungrouped features stand alone."""
    groups: Dict[str, List[Feature]] = {}
    order: List[str] = []
    for i, feat in enumerate(features):
        key = feat.group_id(tag)
        if key is None:
            key = f"__ungrouped_{i}"
        if key not in groups:
            groups[key] = []
            order.append(key)
        groups[key].append(feat)
    return [FeatureGroup(group_id=key, features=groups[key]) for key in order]


__all__ = ["Feature", "FeatureGroup", "group_features", "ALIGNMENT_SEQNAME"]
