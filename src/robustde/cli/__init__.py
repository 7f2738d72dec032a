"""
robustde CLI - Command-line interface for robust differential expression scoring.

Commands:
    robustde run   - Filter outlier genes/samples, normalize, and score
"""

import argparse
import sys
from typing import Optional, List

from robustde import __version__


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for robustde."""
    parser = argparse.ArgumentParser(
        prog="robustde",
        description="Robust PCA outlier filtering and Z-score differential expression "
                    "for cell-line RNA-seq panels",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run           Filter outliers, normalize, and compute Z-scores / FDR

Examples:
  robustde run --input CCLE_RNAseq_genes_counts.gct --output results/scores
  robustde run --input counts.csv --output results/scores --mapping ensembl_to_symbol.csv
  robustde run --input counts.gct --output results/scores --group-by lineage --csv
  robustde run --config pipeline.yaml --seed 7
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from robustde.cli import run
    run.register_parser(subparsers)

    argv = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(argv)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw arguments after the subcommand, to tell explicit flags from defaults
    parsed_args.argv = argv[argv.index(parsed_args.command) + 1:]

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
