#!/usr/bin/env python3
"""Decode a multiple alignment with a phylo-HMM and write predicted features."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

# Ensure repository modules are importable when invoked as a script
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from phylohmm.algorithms import PhyloHMM, get_decoder  # pylint: disable=C0413
from phylohmm.algorithms.forward_backward import feature_statistics  # pylint: disable=C0413
from phylohmm.coords import FeatureProjector, label_categories  # pylint: disable=C0413
from phylohmm.coords.projector import (  # pylint: disable=C0413
    DEFAULT_CDS_TYPES,
    DEFAULT_SIGNAL_TYPES,
    background_category_ids,
)
from phylohmm.emissions import EmissionCache  # pylint: disable=C0413
from phylohmm.errors import ConfigError, PhyloHMMError  # pylint: disable=C0413
from phylohmm.stats import TupleStore  # pylint: disable=C0413
from phylohmm.types import Alignment, SamplerConfig  # pylint: disable=C0413
from phylohmm.utils import load_phylo_hmm, read_alignment_fasta, read_gff, write_gff  # pylint: disable=C0413

from scripts.constants import (  # pylint: disable=C0413
    BIAS_RANGE_MAX,
    BIAS_RANGE_MIN,
    BURN_IN_SAMPLES,
    DEFAULT_BACKGROUND_CATS,
    DEFAULT_GROUPTAG,
    HMM_YAML,
    NUM_SAMPLES,
    RANDOM_SEED,
    SAMPLE_INTERVAL,
)

logger = logging.getLogger(__name__)


def _background_states(hmm: PhyloHMM, names: List[str]) -> List[int]:
    return hmm.states_in_categories(background_category_ids(hmm.category_map, names))


def _reference_path(hmm: PhyloHMM, alignment: Alignment, gff_path: Path) -> np.ndarray:
    """Column-wise reference states from annotated features (-1 where no state)."""
    labelled = label_categories(alignment, read_gff(gff_path), hmm.category_map)
    first_state: Dict[int, int] = {}
    for state in range(hmm.nstates):
        if hmm.state_strand(state) == "+":
            first_state.setdefault(hmm.state_category(state), state)
    return np.array([first_state.get(int(c), -1) for c in labelled.categories], dtype=int)


def _prepare(args: argparse.Namespace):
    hmm = load_phylo_hmm(args.model)
    background = _background_states(hmm, args.background_cats)
    if args.reflect:
        hmm = hmm.reflect(background)
        background = _background_states(hmm, args.background_cats)
    if args.bias:
        if not BIAS_RANGE_MIN <= args.bias <= BIAS_RANGE_MAX:
            raise ConfigError(
                f"bias must be in [{BIAS_RANGE_MIN}, {BIAS_RANGE_MAX}], got {args.bias}"
            )
        hmm = hmm.add_bias(background, args.bias)

    alignment = read_alignment_fasta(args.alignment)
    store = TupleStore.build(alignment, tuple_size=args.tuple_size, name=args.seqname)
    emissions = EmissionCache.from_hmm(hmm, store)
    if args.missing_data:
        adjusted = emissions.adjust_for_missing_data(store, ref_index=args.missing_data)
        logger.info("adjusted emissions of %d tuples for missing data", adjusted)
    return hmm, alignment, store, emissions, background


def _write_features(
    projector: FeatureProjector,
    alignment: Alignment,
    features,
    args: argparse.Namespace,
) -> None:
    if args.ref_index > 0:
        features = projector.to_reference(alignment, features, args.ref_index, args.offset)
    if args.output is None:
        write_gff(features, sys.stdout)
    else:
        write_gff(features, args.output)
        logger.info("wrote %d features to %s", len(features), args.output)


def run_viterbi(args: argparse.Namespace) -> None:
    hmm, alignment, store, emissions, background = _prepare(args)
    result = get_decoder("viterbi").compute_result(hmm, emissions, store)
    logger.info("Viterbi log probability: %.4f", result.log_prob)
    projector = FeatureProjector(hmm, seqname=args.seqname, grouptag=args.grouptag)
    features = projector.path_to_features(result.path)
    if args.score:
        logger.info("scoring predictions")
        features = projector.score_features(
            features,
            emissions.position_view(store),
            background,
            cds_types=args.cds_types,
            signal_types=args.signal_types,
        )
    _write_features(projector, alignment, features, args)


def run_posterior(args: argparse.Namespace) -> None:
    hmm, alignment, store, emissions, background = _prepare(args)
    result = get_decoder("posterior").compute_result(hmm, emissions, store)
    logger.info("log likelihood: %.4f", result.log_likelihood)
    feature_states = [s for s in range(hmm.nstates) if s not in set(background)]
    if not feature_states:
        raise PhyloHMMError("all states are background states")

    out = sys.stdout if args.output is None else Path(args.output).open("w", encoding="utf-8")
    try:
        if args.features is not None:
            features = read_gff(args.features)
            out.write("#start\tend\tpost_mean\tpost_var\tprior_mean\tprior_var\tp_cons\tp_acc\n")
            for stat in feature_statistics(result, features, feature_states, hmm):
                out.write(
                    f"{stat.start}\t{stat.end}\t{stat.post_mean:.4f}\t{stat.post_var:.4f}\t"
                    f"{stat.prior_mean:.4f}\t{stat.prior_var:.4f}\t"
                    f"{stat.p_conserved:.4g}\t{stat.p_accelerated:.4g}\n"
                )
        else:
            scores = FeatureProjector.posterior_scores(result, feature_states)
            for col, score in enumerate(scores, start=1):
                out.write(f"{col}\t{score:.4f}\n")
    finally:
        if out is not sys.stdout:
            out.close()


def run_sample(args: argparse.Namespace) -> None:
    hmm, alignment, store, emissions, background = _prepare(args)
    config = SamplerConfig(
        bsamples=args.bsamples,
        nsamples=args.nsamples,
        sample_interval=args.interval,
        seed=args.seed,
        ref_as_prior=args.ref_as_prior,
        force_priors=args.force_priors,
        prior_pseudocount=args.pseudocount,
        background_states=tuple(background),
    )
    reference: Optional[Dict[str, np.ndarray]] = None
    if args.reference is not None:
        reference = {args.seqname: _reference_path(hmm, alignment, args.reference)}
    sampler = get_decoder(
        "sample", config=config, reference_paths=reference, precomputed=args.precomputed
    )
    counts = sampler.compute_result(hmm, emissions, store)
    if args.save_counts is not None:
        counts.write(args.save_counts)
        logger.info("wrote sampling data to %s", args.save_counts)
    projector = FeatureProjector(hmm, seqname=args.seqname, grouptag=args.grouptag)
    _write_features(projector, alignment, projector.path_counts_to_features(counts, store), args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-a", "--alignment", type=Path, required=True, help="Aligned FASTA file."
    )
    common.add_argument(
        "-m", "--model", type=Path, default=HMM_YAML, help="Phylo-HMM YAML definition."
    )
    common.add_argument("-o", "--output", type=Path, default=None, help="Output file.")
    common.add_argument("--tuple-size", type=int, default=1)
    common.add_argument("--seqname", default="MSA", help="Name of the alignment block.")
    common.add_argument("--grouptag", default=DEFAULT_GROUPTAG)
    common.add_argument(
        "--background-cats",
        nargs="+",
        default=DEFAULT_BACKGROUND_CATS,
        help="Category names treated as background.",
    )
    common.add_argument("--reflect", action="store_true", help="Add reverse-strand states.")
    common.add_argument("--bias", type=float, default=0.0, help="Log-odds bias on features.")
    common.add_argument(
        "--missing-data",
        type=int,
        default=0,
        metavar="REF",
        help="Score columns where only sequence REF (1-based) has data as background.",
    )
    common.add_argument(
        "--ref-index",
        type=int,
        default=0,
        help="Report features in this sequence's frame (1-based; 0 = alignment).",
    )
    common.add_argument("--offset", type=int, default=0, help="Added to output coordinates.")

    sub = parser.add_subparsers(dest="command", required=True)

    viterbi = sub.add_parser("viterbi", parents=[common], help="Most probable state path.")
    viterbi.add_argument(
        "-S", "--score", action="store_true", help="Log-odds scores for coding features."
    )
    viterbi.add_argument("--cds-types", nargs="+", default=list(DEFAULT_CDS_TYPES))
    viterbi.add_argument("--signal-types", nargs="+", default=list(DEFAULT_SIGNAL_TYPES))
    viterbi.set_defaults(func=run_viterbi)

    posterior = sub.add_parser("posterior", parents=[common], help="Posterior scores.")
    posterior.add_argument(
        "--features", type=Path, default=None, help="GFF features to summarize."
    )
    posterior.set_defaults(func=run_posterior)

    sample = sub.add_parser("sample", parents=[common], help="Stochastic path sampling.")
    sample.add_argument("--bsamples", type=int, default=BURN_IN_SAMPLES)
    sample.add_argument("--nsamples", type=int, default=NUM_SAMPLES)
    sample.add_argument("--interval", type=int, default=SAMPLE_INTERVAL)
    sample.add_argument("--seed", type=int, default=RANDOM_SEED)
    sample.add_argument("--reference", type=Path, default=None, help="Reference GFF.")
    sample.add_argument("--ref-as-prior", action="store_true")
    sample.add_argument("--force-priors", action="store_true")
    sample.add_argument(
        "--pseudocount",
        type=float,
        default=None,
        help="Transition pseudo-count; enables Dirichlet redraws (default 1 with priors).",
    )
    sample.add_argument("--save-counts", type=Path, default=None)
    sample.add_argument("--precomputed", type=Path, default=None)
    sample.set_defaults(func=run_sample)
    return parser


def main() -> None:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except PhyloHMMError as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
