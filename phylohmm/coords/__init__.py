"""Coordinate mapping and feature projection."""

from .coord_map import CoordMap, add_offset, map_seq_to_seq, remap_features
from .projector import FeatureProjector, label_categories


__all__ = [
    "CoordMap",
    "add_offset",
    "map_seq_to_seq",
    "remap_features",
    "FeatureProjector",
    "label_categories",
]
