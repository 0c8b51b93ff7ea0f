"""
coexnet soft-threshold command - Scale-free topology scan.

Computes the similarity matrix once and reports the scale-free fit for each
candidate power, as a guide for choosing --power in `coexnet build`.

Usage:
    coexnet soft-threshold --input expr.csv
    coexnet soft-threshold --input expr.csv --powers 4 6 8 10 12 --output sft.csv
"""

import argparse
import logging
from pathlib import Path

from coexnet.cli._validators import _positive_float, _positive_int, _unit_interval
from coexnet.network.adjacency import DEFAULT_POWERS


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the soft-threshold subcommand."""
    parser = subparsers.add_parser(
        "soft-threshold",
        help="Scan soft-threshold powers for scale-free topology",
        description="Report scale-free fit R², slope and connectivity per power."
    )

    parser.add_argument("--input", "-i", type=Path, required=True,
                        help="Expression table (genes x samples, log-scaled)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Write the fit table as CSV")
    parser.add_argument("--powers", type=_positive_float, nargs="+", default=list(DEFAULT_POWERS),
                        help="Candidate powers (default: 1-10, 12-20 by 2)")
    parser.add_argument("--unsigned", dest="signed", action="store_false",
                        help="Unsigned adjacency")
    parser.add_argument("--alpha", type=_unit_interval, default=0.5,
                        help="Weight of |correlation| (default: 0.5)")
    parser.add_argument("--beta", type=_unit_interval, default=0.5,
                        help="Weight of distance closeness (default: 0.5)")
    parser.add_argument("--r-squared-cut", type=_unit_interval, default=0.85,
                        help="Fit R² a power must reach to be suggested (default: 0.85)")
    parser.add_argument("--n-breaks", type=_positive_int, default=10,
                        help="Connectivity histogram bins (default: 10)")
    parser.add_argument("--chunk-size", type=_positive_int, default=500,
                        help="Rows per similarity block (default: 500)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging and progress bars")

    parser.set_defaults(func=run_soft_threshold)


def run_soft_threshold(args: argparse.Namespace) -> int:
    """Execute the soft-threshold command."""
    from coexnet.core.exceptions import CoexnetError
    from coexnet.io.loaders import load_expression_matrix
    from coexnet.network.adjacency import pick_soft_threshold
    from coexnet.network.similarity import compute_similarity
    from coexnet.utils.fileio import atomic_write_csv

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    try:
        matrix = load_expression_matrix(args.input)
        similarity = compute_similarity(
            matrix,
            alpha=args.alpha,
            beta=args.beta,
            chunk_size=args.chunk_size,
            verbose=args.verbose,
        )
        sft = pick_soft_threshold(
            similarity,
            powers=args.powers,
            signed=args.signed,
            r_squared_cut=args.r_squared_cut,
            n_breaks=args.n_breaks,
        )
    except (FileNotFoundError, ValueError, CoexnetError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"ERROR: {e}")
        return 1

    print(f"\n{'='*70}")
    print(f"  Scale-free Topology Fit ({'signed' if args.signed else 'unsigned'})")
    print(f"{'='*70}")
    print(sft.table.to_string(index=False, float_format=lambda x: f"{x:.4f}"))
    print()
    if sft.power_estimate is not None:
        print(f"  Suggested power: {sft.power_estimate} (first with R² >= {args.r_squared_cut})")
    else:
        print(f"  No power reached R² >= {args.r_squared_cut}; "
              f"best fit at power {sft.best_power()}")

    if args.output:
        atomic_write_csv(args.output, sft.table, index=False)
        logger.info(f"Saved: {args.output}")
    return 0
