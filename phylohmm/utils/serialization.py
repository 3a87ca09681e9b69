"""Serialization utilities for phylo-HMM definitions (load and save).

Model file layout::

    categories:
      - name: background
      - name: CDS
        cycle: 3
        precedence: 2
    states:
      - name: bg
        category: background
      - name: cds1
        category: 1
        strand: "+"
    transitions: [[0.9, 0.1], ...]
    initial: [0.5, 0.5]          # optional, uniform when absent
    models:
      background:
        tree: "((human:0.1,mouse:0.2):0.05,dog:0.3);"
        background_freqs: [0.25, 0.25, 0.25, 0.25]
        rate_matrix: [[...], ...]  # optional, F81 when absent
        scale: 1.0
        allow_gaps: true

Model keys are category names (covering every id of the range) or
category ids.
"""

from __future__ import annotations

from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import numpy as np
import yaml

from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.emissions.tree_model import TreeModel
from phylohmm.errors import ConfigError
from phylohmm.types.categories import CategoryMap, CategoryRange
from phylohmm.types.parameters import HMMParameters


def _convert_values(value: Any, precision: int | None) -> Any:
    """
    Recursively convert dataclasses/dicts/lists/arrays and optionally round floats.
    """
    if is_dataclass(value):
        return _convert_values(asdict(value), precision)
    if isinstance(value, np.ndarray):
        return _convert_values(value.tolist(), precision)
    if isinstance(value, dict):
        return {key: _convert_values(val, precision) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_convert_values(item, precision) for item in value]
    if isinstance(value, np.generic):
        return _convert_values(value.item(), precision)
    if isinstance(value, float) and precision is not None:
        return round(value, precision)
    return value


def _read_yaml(yaml_path: Union[str, Path]) -> Dict[str, Any]:
    with Path(yaml_path).open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)
    if not isinstance(payload, dict):
        raise ConfigError(f"{yaml_path}: expected a mapping at top level")
    return payload


def category_map_from_dict(entries: List[Mapping[str, Any]]) -> CategoryMap:
    """Category ranges are laid out in order, each starting after the last."""
    ranges = []
    next_id = 0
    for entry in entries:
        if "name" not in entry:
            raise ConfigError(f"category entry without name: {entry}")
        rng = CategoryRange(
            name=str(entry["name"]),
            start_id=next_id,
            cycle=int(entry.get("cycle", 1)),
            precedence=int(entry.get("precedence", 1)),
        )
        ranges.append(rng)
        next_id = rng.end_id + 1
    return CategoryMap(ranges=ranges)


def load_category_map(yaml_path: Union[str, Path]) -> CategoryMap:
    """Load a category map from a YAML file (top-level ``categories`` list)."""
    payload = _read_yaml(yaml_path)
    entries = payload.get("categories")
    if not entries:
        raise ConfigError(f"{yaml_path}: no categories defined")
    return category_map_from_dict(entries)


def _tree_model_from_dict(entry: Mapping[str, Any]) -> TreeModel:
    try:
        newick = entry["tree"]
        freqs = entry["background_freqs"]
    except KeyError as exc:
        raise ConfigError(f"tree model is missing field {exc}") from None
    return TreeModel(
        newick,
        freqs,
        rate_matrix=entry.get("rate_matrix"),
        scale=float(entry.get("scale", 1.0)),
        allow_gaps=bool(entry.get("allow_gaps", True)),
        nratecats=int(entry.get("nratecats", 1)),
        order=int(entry.get("order", 0)),
        alphabet=str(entry.get("alphabet", "ACGT")),
    )


def phylo_hmm_from_dict(payload: Mapping[str, Any]) -> PhyloHMM:
    cat_entries = payload.get("categories")
    category_map = category_map_from_dict(cat_entries) if cat_entries else None

    states = payload.get("states")
    if not states:
        raise ConfigError("no states defined")
    names, categories, strands = [], [], []
    for state in states:
        names.append(str(state["name"]))
        cat = state.get("category", 0)
        if isinstance(cat, str) and not cat.isdigit():
            if category_map is None:
                raise ConfigError(f"state '{state['name']}' names a category but no map is given")
            cat_id = category_map.category_id(cat)
            if cat_id is None:
                raise ConfigError(f"state '{state['name']}': unknown category '{cat}'")
            cat = cat_id
        categories.append(int(cat))
        strands.append(str(state.get("strand", "+")))

    if "transitions" not in payload:
        raise ConfigError("no transition matrix defined")
    params = HMMParameters.from_probabilities(
        names,
        payload["transitions"],
        initial=payload.get("initial"),
        state_categories=categories,
        state_strands=strands,
    )
    hmm = PhyloHMM(params, category_map=category_map)

    models: Dict[int, TreeModel] = {}
    for key, entry in (payload.get("models") or {}).items():
        model = _tree_model_from_dict(entry)
        for cat_id in hmm.category_map.category_ids([str(key)]):
            models[cat_id] = model
    return PhyloHMM(params, models=models, category_map=hmm.category_map)


def load_phylo_hmm(yaml_path: Union[str, Path]) -> PhyloHMM:
    """Load a PhyloHMM definition from a YAML file."""
    payload = _read_yaml(yaml_path)
    return phylo_hmm_from_dict(payload.get("hmm", payload))


def phylo_hmm_to_dict(hmm: PhyloHMM, float_precision: int | None = 6) -> Dict[str, Any]:
    """
    Convert a PhyloHMM into a plain dictionary suitable for YAML.

    Tree models shared by several category ids are written once per id.
    """
    cmap = hmm.category_map
    transitions = np.exp(hmm.log_transitions)
    initial = np.exp(hmm.log_initial)
    payload: Dict[str, Any] = {
        "categories": [
            {"name": rng.name, "cycle": rng.cycle, "precedence": rng.precedence}
            for rng in cmap.ranges
        ],
        "states": [
            {
                "name": hmm.state_names[s],
                "category": hmm.state_category(s),
                "strand": hmm.state_strand(s),
            }
            for s in range(hmm.nstates)
        ],
        "transitions": transitions,
        "initial": initial,
    }
    models = {}
    for cat_id, model in sorted(hmm.models.items()):
        entry = {
            "tree": str(model.tree).strip(),
            "background_freqs": model.background_freqs,
            "scale": model.scale,
            "allow_gaps": model.allow_gaps,
        }
        if model.rate_matrix is not None:
            entry["rate_matrix"] = model.rate_matrix
        if model.alphabet != "ACGT":
            entry["alphabet"] = model.alphabet
        models[cat_id] = entry
    if models:
        payload["models"] = models
    return _convert_values(payload, float_precision)


def save_phylo_hmm(hmm: PhyloHMM, yaml_path: Union[str, Path]) -> None:
    path = Path(yaml_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(phylo_hmm_to_dict(hmm), handle, sort_keys=False)


__all__ = [
    "category_map_from_dict",
    "load_category_map",
    "load_phylo_hmm",
    "phylo_hmm_from_dict",
    "phylo_hmm_to_dict",
    "save_phylo_hmm",
]
