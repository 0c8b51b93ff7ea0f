"""
coexnet build command - Full co-expression network construction.

Runs similarity → adjacency → module detection → graph export and writes:

    <output>/network.graphml   pruned, rescaled graph with module attributes
    <output>/modules.csv       gene, module, color
    <output>/summary.json      parameters, threshold search, counts

Exit codes: 0 success, 1 fatal error, 2 export produced no edges (modules and
summary are still written; rerun with a lower --threshold or higher
--max-edge-ratio).

Usage:
    coexnet build --input expr.csv --output results/network --power 8
    coexnet build --config network.yaml --threshold 0.3
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path

from coexnet.cli._validators import (
    _non_negative_float,
    _positive_float,
    _positive_int,
    _unit_interval,
)
from coexnet.pipeline import NetworkConfig

GRAPH_FILENAME = "network.graphml"
MODULES_FILENAME = "modules.csv"
SUMMARY_FILENAME = "summary.json"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_EDGES = 2


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the build subcommand."""
    defaults = NetworkConfig()

    parser = subparsers.add_parser(
        "build",
        help="Build co-expression network, modules and GraphML export",
        description=(
            "Compute hybrid correlation/distance similarity, soft-threshold it "
            "into an adjacency, detect modules by dynamic branch cutting and "
            "export a pruned graph as GraphML."
        )
    )

    # Input/output
    parser.add_argument("--input", "-i", type=Path, default=None,
                        help="Expression table (genes x samples, log-scaled)")
    parser.add_argument("--annotations", "-a", type=Path, default=None,
                        help="Per-gene annotation table carried onto graph vertices")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory")
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="YAML/JSON config file (CLI flags override it)")

    # Similarity
    parser.add_argument("--alpha", type=_unit_interval, default=defaults.alpha,
                        help=f"Weight of |correlation| (default: {defaults.alpha})")
    parser.add_argument("--beta", type=_unit_interval, default=defaults.beta,
                        help=f"Weight of distance closeness (default: {defaults.beta})")
    parser.add_argument("--chunk-size", type=_positive_int, default=defaults.chunk_size,
                        help=f"Rows per similarity block (default: {defaults.chunk_size})")

    # Adjacency
    parser.add_argument("--power", type=_positive_float, default=defaults.power,
                        help=f"Soft-threshold power (default: {defaults.power})")
    parser.add_argument("--unsigned", dest="signed", action="store_false",
                        help="Unsigned adjacency: anti-correlation counts as connection")

    # Modules
    parser.add_argument("--min-module-size", type=_positive_int, default=defaults.min_module_size,
                        help=f"Minimum genes per module (default: {defaults.min_module_size})")
    parser.add_argument("--no-deep-split", dest="deep_split", action="store_false",
                        help="Coarser branch cutting (fewer, larger modules)")
    parser.add_argument("--skip-modules", action="store_true",
                        help="Export the graph without module detection")

    # Export
    parser.add_argument("--threshold", type=_unit_interval, default=defaults.threshold,
                        help=f"Requested edge cutoff (default: {defaults.threshold})")
    parser.add_argument("--max-edge-ratio", type=_non_negative_float, default=defaults.max_edge_ratio,
                        help=f"Edge budget per vertex (default: {defaults.max_edge_ratio})")
    parser.add_argument("--unweighted", dest="weighted", action="store_false",
                        help="Write every kept edge with weight 1")

    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging and similarity progress bars")

    parser.set_defaults(func=run_build)


def network_config_from_args(args: argparse.Namespace) -> NetworkConfig:
    """NetworkConfig from (config-merged) CLI arguments."""
    return NetworkConfig(
        power=args.power,
        signed=args.signed,
        alpha=args.alpha,
        beta=args.beta,
        min_module_size=args.min_module_size,
        deep_split=args.deep_split,
        threshold=args.threshold,
        max_edge_ratio=args.max_edge_ratio,
        weighted=args.weighted,
        chunk_size=args.chunk_size,
        skip_modules=args.skip_modules,
    )


def run_build(args: argparse.Namespace) -> int:
    """Execute the build command."""
    from coexnet.core.exceptions import CoexnetError
    from coexnet.io.loaders import load_annotation_table, load_expression_matrix
    from coexnet.io.writers import write_module_table, write_run_summary
    from coexnet.pipeline import build_network

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    # Load and merge config file if provided
    if args.config:
        from coexnet.cli.config import load_config, merge_config_with_args, validate_config

        print(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
            # Skip the subcommand name
            args = merge_config_with_args(config, args, getattr(args, 'argv', [])[1:])
        except (FileNotFoundError, ValueError) as e:
            print(f"ERROR: Config file error: {e}")
            return EXIT_ERROR

    # Validate required arguments (after config merge)
    if not args.input:
        print("ERROR: --input is required (via CLI or config file)")
        return EXIT_ERROR
    if not args.output:
        print("ERROR: --output is required (via CLI or config file)")
        return EXIT_ERROR

    start_time = datetime.now()
    print(f"\n{'='*70}")
    print("  Co-expression Network Construction")
    print(f"{'='*70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    try:
        network_config = network_config_from_args(args)
        network_config.validate()

        matrix = load_expression_matrix(args.input)
        annotations = load_annotation_table(args.annotations) if args.annotations else None

        graph_path = args.output / GRAPH_FILENAME
        result = build_network(
            matrix,
            config=network_config,
            annotations=annotations,
            output_path=graph_path,
            verbose=args.verbose,
        )

        if result.modules is not None:
            write_module_table(result.modules, args.output / MODULES_FILENAME)
        write_run_summary(result, args.output / SUMMARY_FILENAME)
    except (FileNotFoundError, ValueError, CoexnetError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"ERROR: {e}")
        return EXIT_ERROR

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"\n{'='*70}")
    print("  Network Results")
    print(f"{'='*70}")
    print(f"  Genes:    {len(result.gene_ids):,}")
    if result.modules is not None:
        print(f"  Modules:  {result.modules.n_modules} "
              f"({result.modules.n_unassigned:,} genes unassigned)")
    if result.graph is None:
        print("  Graph:    no edges survived pruning")
        print("            rerun with a lower --threshold or a higher --max-edge-ratio")
        print(f"\nResults saved to: {args.output} ({elapsed:.1f}s)")
        return EXIT_NO_EDGES

    print(f"  Graph:    {result.graph.n_vertices:,} vertices, {result.graph.n_edges:,} edges "
          f"(threshold {result.graph.threshold:.4f})")
    print(f"\nResults saved to: {args.output} ({elapsed:.1f}s)")
    return EXIT_OK
