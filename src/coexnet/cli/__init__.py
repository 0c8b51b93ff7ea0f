"""
coexnet CLI - Command-line interface for co-expression network construction.

Commands:
    coexnet build           - Similarity, adjacency, modules and GraphML export
    coexnet soft-threshold  - Scale-free fit per soft-threshold power
"""

import argparse
import sys
from typing import List, Optional


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for coexnet."""
    parser = argparse.ArgumentParser(
        prog="coexnet",
        description="Weighted gene co-expression network construction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  build           Build network, detect modules, export GraphML
  soft-threshold  Scan soft-threshold powers for scale-free topology

Examples:
  coexnet soft-threshold --input expr.csv
  coexnet build --input expr.csv --output results/network --power 8
  coexnet build --config network.yaml --threshold 0.3
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from coexnet.cli import build, soft_threshold
    build.register_parser(subparsers)
    soft_threshold.register_parser(subparsers)

    argv = sys.argv[1:] if args is None else list(args)
    parsed_args = parser.parse_args(argv)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw argv lets config merging tell explicit flags from defaults
    parsed_args.argv = argv

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
