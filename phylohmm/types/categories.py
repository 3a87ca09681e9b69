"""Site categories and the category map that names them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from phylohmm.errors import ConfigError

BACKGROUND_NAME = "background"


@dataclass(frozen=True)
class CategoryRange:
    """A named category occupying one or more consecutive category ids.

    Cyclic categories (codon positions, motif positions) span ``cycle``
    ids; ``start_id + (offset + frame) % cycle`` is the id of a column at
    ``offset`` into a feature with the given frame.
    """

    name: str
    start_id: int
    cycle: int = 1
    precedence: int = 1

    def __post_init__(self) -> None:
        if self.cycle < 1:
            raise ConfigError(f"category '{self.name}' must have cycle >= 1")
        if self.start_id < 0:
            raise ConfigError(f"category '{self.name}' has negative id")

    @property
    def end_id(self) -> int:
        return self.start_id + self.cycle - 1

    @property
    def is_cyclic(self) -> bool:
        return self.cycle > 1

    def contains(self, cat_id: int) -> bool:
        return self.start_id <= cat_id <= self.end_id

    def category_for(self, offset: int, frame: int = 0) -> int:
        return self.start_id + (offset + frame) % self.cycle


@dataclass(frozen=True)
class CategoryMap:
    """Ordered set of category ranges; id 0 is always background."""

    ranges: List[CategoryRange]

    def __post_init__(self) -> None:
        ranges = sorted(self.ranges, key=lambda r: r.start_id)
        if not ranges or ranges[0].start_id != 0:
            raise ConfigError("category map must define category id 0 (background)")
        expected = 0
        for rng in ranges:
            if rng.start_id != expected:
                raise ConfigError(
                    f"category ids must be contiguous; '{rng.name}' starts at "
                    f"{rng.start_id}, expected {expected}"
                )
            expected = rng.end_id + 1
        names = [rng.name for rng in ranges]
        if len(set(names)) != len(names):
            raise ConfigError(f"duplicate category names: {names}")
        object.__setattr__(self, "ranges", ranges)

    @classmethod
    def from_names(cls, names: Sequence[str]) -> "CategoryMap":
        """Build a map of non-cyclic categories, one id per name."""
        return cls(
            ranges=[CategoryRange(name=name, start_id=i) for i, name in enumerate(names)]
        )

    @property
    def ncats(self) -> int:
        return self.ranges[-1].end_id + 1

    @property
    def background(self) -> CategoryRange:
        return self.ranges[0]

    def get_range(self, name: str) -> Optional[CategoryRange]:
        for rng in self.ranges:
            if rng.name == name:
                return rng
        return None

    def range_of(self, cat_id: int) -> CategoryRange:
        for rng in self.ranges:
            if rng.contains(cat_id):
                return rng
        raise ConfigError(f"category id {cat_id} not in category map")

    def category_id(self, name: str) -> Optional[int]:
        rng = self.get_range(name)
        return None if rng is None else rng.start_id

    def precedence(self, cat_id: int) -> int:
        return self.range_of(cat_id).precedence

    def category_ids(self, names: Sequence[str]) -> List[int]:
        """Expand names (or numeric strings) into the category ids they cover."""
        ids: List[int] = []
        for name in names:
            if str(name).isdigit():
                ids.append(int(name))
                continue
            rng = self.get_range(name)
            if rng is None:
                raise ConfigError(f"unknown category '{name}'")
            ids.extend(range(rng.start_id, rng.end_id + 1))
        return ids

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            rng.name: {"cycle": rng.cycle, "precedence": rng.precedence}
            for rng in self.ranges
        }


__all__ = ["CategoryRange", "CategoryMap", "BACKGROUND_NAME"]
