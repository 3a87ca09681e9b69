"""Conversion between column labels, decoded paths and feature records."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from phylohmm.algorithms.forward_backward import forward_matrix, logsumexp
from phylohmm.algorithms.hmm import PhyloHMM
from phylohmm.algorithms.path_counts import PathCounts
from phylohmm.coords.coord_map import ALIGNMENT_FRAME, remap_features
from phylohmm.errors import CoordinateError
from phylohmm.stats.tuple_store import TupleStore
from phylohmm.types.alignment import Alignment
from phylohmm.types.categories import CategoryMap
from phylohmm.types.features import Feature
from phylohmm.types.results import PosteriorResult

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")

DEFAULT_CDS_TYPES = ("CDS", "start_codon", "cds5'ss", "cds3'ss")
DEFAULT_SIGNAL_TYPES = ("stop_codon", "5'splice", "3'splice", "prestart")


def label_categories(
    alignment: Alignment, features: Sequence[Feature], category_map: CategoryMap
) -> Alignment:
    """Label alignment columns from features in the alignment frame.

    Unrecognized feature types are ignored. Where features overlap, the
    category with the lower precedence value wins; background can always be
    overwritten. Cyclic categories count their offset from the feature end
    on the minus strand.
    """
    categories = np.zeros(alignment.length, dtype=int)
    for feat in features:
        rng = category_map.get_range(feat.feature)
        if rng is None:
            continue
        if feat.start < 1 or feat.end > alignment.length or feat.end < feat.start:
            logger.warning(
                "ignoring out-of-range feature %s %d-%d", feat.feature, feat.start, feat.end
            )
            continue
        frame = feat.frame if feat.frame is not None else 0
        for pos in range(feat.start, feat.end + 1):
            offset = feat.end - pos if feat.strand == "-" else pos - feat.start
            new_cat = rng.category_for(offset, frame)
            old_cat = categories[pos - 1]
            if old_cat == 0 or category_map.precedence(new_cat) < category_map.precedence(
                old_cat
            ):
                categories[pos - 1] = new_cat
    return alignment.with_categories(categories)


class FeatureProjector:
    """Turns decoded paths and sampled path counts into features.

    Args:
        hmm: The decoded phylo-HMM; its category map names the features.
        seqname: Seqname of the produced features.
        grouptag: Attribute carrying the group id.
        source: GFF source field.
        idpref: Prefix of generated group ids.
    """

    def __init__(
        self,
        hmm: PhyloHMM,
        seqname: str = "MSA",
        grouptag: str = "exon_id",
        source: str = "phylohmm",
        idpref: str = "",
    ) -> None:
        self.hmm = hmm
        self.seqname = seqname
        self.grouptag = grouptag
        self.source = source
        self.idpref = idpref

    def _gff_frame(self, strand: str, first_cat: int, last_cat: int) -> Optional[int]:
        rng = self.hmm.category_map.range_of(first_cat)
        if not rng.is_cyclic:
            return None
        anchor = first_cat if strand != "-" else last_cat
        offset = anchor - rng.start_id
        return (rng.cycle - offset) % rng.cycle

    def path_to_features(self, path: Sequence[int]) -> List[Feature]:
        """Maximal runs of one category range and strand become features.

        Background is omitted; runs not separated by background share a
        group id.
        """
        cmap = self.hmm.category_map
        features: List[Feature] = []
        group = 0
        in_group = False
        run_start = None
        run_key = None
        for pos in range(len(path) + 1):
            if pos < len(path):
                state = int(path[pos])
                cat = self.hmm.state_category(state)
                key = (cmap.range_of(cat).name, self.hmm.state_strand(state))
            else:
                key = None
            if run_start is not None and key != run_key:
                features.append(self._run_feature(path, run_start, pos, group))
                run_start = None
            if key is None:
                break
            if key[0] == cmap.background.name:
                in_group = False
                continue
            if not in_group:
                group += 1
                in_group = True
            if run_start is None:
                run_start = pos
                run_key = key
        return features

    def _run_feature(self, path: Sequence[int], start: int, end: int, group: int) -> Feature:
        first_state, last_state = int(path[start]), int(path[end - 1])
        strand = self.hmm.state_strand(first_state)
        cat = self.hmm.state_category(first_state)
        return Feature(
            seqname=self.seqname,
            source=self.source,
            feature=self.hmm.category_map.range_of(cat).name,
            start=start + 1,
            end=end,
            strand=strand,
            frame=self._gff_frame(strand, cat, self.hmm.state_category(last_state)),
            attributes={self.grouptag: f"{self.idpref}{group}"},
        )

    def _subset_log_prob(self, states: Sequence[int], emissions: np.ndarray) -> float:
        """Log total probability of ``emissions`` under the HMM restricted to ``states``.

        Transition rows are renormalized over the subset and the chain starts
        from the restricted stationary distribution.
        """
        if not states:
            return NEG_INF
        idx = np.asarray(states, dtype=int)
        trans = self.hmm.log_transitions[np.ix_(idx, idx)].copy()
        for row in range(len(idx)):
            norm = logsumexp(list(trans[row]))
            if norm != NEG_INF:
                trans[row] -= norm
        init = self.hmm.stationary_distribution()[idx]
        if init.sum() <= 0:
            init = np.ones(len(idx))
        with np.errstate(divide="ignore"):
            log_init = np.log(init / init.sum())
        _, log_z = forward_matrix(log_init, trans, emissions[idx])
        return log_z

    def score_features(
        self,
        features: Sequence[Feature],
        emissions: np.ndarray,
        background_states: Sequence[int],
        cds_types: Sequence[str] = DEFAULT_CDS_TYPES,
        signal_types: Sequence[str] = DEFAULT_SIGNAL_TYPES,
    ) -> List[Feature]:
        """Log-odds scores of coding features against the background states.

        Each feature of a ``cds_types`` type is extended over the adjacent or
        overlapping ``signal_types`` features on its strand. Its score is the
        log total probability of that span under the coding and signal states
        minus that under ``background_states``. Other features are returned
        unchanged. ``emissions`` is position-wise over alignment columns.
        """
        cmap = self.hmm.category_map
        exon_types = [
            t for t in list(cds_types) + list(signal_types) if cmap.get_range(t) is not None
        ]
        exon_states = self.hmm.states_in_categories(cmap.category_ids(exon_types))
        scored: List[Feature] = []
        for feat in features:
            if feat.feature not in cds_types:
                scored.append(feat)
                continue
            start, end = feat.start, feat.end
            for other in features:
                if (
                    other.feature in signal_types
                    and other.strand == feat.strand
                    and other.start <= feat.end + 1
                    and other.end >= feat.start - 1
                ):
                    start, end = min(start, other.start), max(end, other.end)
            if start < 1 or end > emissions.shape[1]:
                raise CoordinateError(
                    f"feature {feat.feature} {start}-{end} lies outside the "
                    f"{emissions.shape[1]} scored columns"
                )
            span = emissions[:, start - 1 : end]
            stranded = [s for s in exon_states if self.hmm.state_strand(s) == feat.strand]
            score = self._subset_log_prob(stranded, span) - self._subset_log_prob(
                background_states, span
            )
            scored.append(replace(feat, score=float(score)))
        return scored

    def path_counts_to_features(
        self, counts: PathCounts, store: Optional[TupleStore] = None
    ) -> List[Feature]:
        """One feature per sampled run, scored by its best state's frequency.

        Features are named after their block; with ``store`` the block's
        ``idx_offset`` is added to the coordinates.
        """
        if counts.nsamples == 0:
            raise ValueError("path counts hold no retained samples")
        offsets = {}
        if store is not None:
            offsets = {block.name: block.idx_offset for block in store.blocks}
        features: List[Feature] = []
        for i, (key, _) in enumerate(counts.items(), start=1):
            state, best = counts.best_state(key)
            offset = offsets.get(key.block, 0)
            features.append(
                Feature(
                    seqname=key.block,
                    source=self.source,
                    feature=self.hmm.category_name(state),
                    start=key.start + 1 + offset,
                    end=key.end + offset,
                    score=best / counts.nsamples,
                    strand=self.hmm.state_strand(state),
                    attributes={self.grouptag: f"{self.idpref}{i}"},
                )
            )
        return features

    @staticmethod
    def posterior_scores(result: PosteriorResult, state_ids: Sequence[int]) -> np.ndarray:
        """Per-column posterior mass of ``state_ids``."""
        if not state_ids:
            raise ValueError("state_ids must not be empty")
        return result.posteriors[list(state_ids)].sum(axis=0)

    def to_reference(
        self,
        alignment: Alignment,
        features: Sequence[Feature],
        ref_index: int = 1,
        offset: int = 0,
    ) -> List[Feature]:
        """Map alignment-frame features into the frame of sequence ``ref_index``.

        Mapped features are renamed after the reference sequence.
        """
        mapped = remap_features(alignment, features, ALIGNMENT_FRAME, ref_index, offset)
        seqname = alignment.names[ref_index - 1]
        return [replace(feat, seqname=seqname) for feat in mapped]


def background_category_ids(category_map: CategoryMap, names: Sequence[str]) -> List[int]:
    """Category ids of the named background types present in the map."""
    present = [name for name in names if category_map.get_range(name) is not None]
    return category_map.category_ids(present)


__all__ = ["label_categories", "FeatureProjector", "background_category_ids"]
