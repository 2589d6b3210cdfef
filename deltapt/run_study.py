#!/usr/bin/env python3
"""
Command line entry point for the delta-pt/pt cut study

Usage:
    # Run with the packaged defaults on one input file
    deltapt-study --input tracks.root

    # Custom configuration and output file
    deltapt-study --config my_study.toml --output results/study.root

    # Sector-boundary check and summary plots
    deltapt-study --input tracks.root --boundary-mask --plots

Exit codes:
    0  success (including runs with an incomplete pass)
    1  input file or tuple missing, unreadable or empty
    2  invalid configuration
"""

from __future__ import annotations

import argparse
import sys

from .modules.config import StudyConfig
from .modules.exceptions import AnalysisError, ConfigurationError, DataLoadError
from .study import DeltaPtCutStudy
from .utils.logging_config import setup_logging, suppress_warnings

EXIT_OK = 0
EXIT_DATA_ERROR = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Delta-pt/pt track-quality cut study",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Every setting lives in the TOML configuration; the packaged
deltapt/config/study.toml holds the defaults and a user file only
needs the keys it changes.

Environment:
  ANALYSIS_WARNINGS=on   show library warnings
  ANALYSIS_PROGRESS=off  hide progress bars
        """,
    )
    parser.add_argument("--config", "-c", default=None,
                        help="TOML configuration merged over the defaults")
    parser.add_argument("--input", "-i", default=None,
                        help="Input ROOT file with the track and truth tuples (overrides io.input_file)")
    parser.add_argument("--output", "-o", default=None,
                        help="Output ROOT file (overrides io.output_file)")
    parser.add_argument("--boundary-mask", action="store_true",
                        help="Also run the TPC sector-boundary mask check")
    parser.add_argument("--plots", action="store_true",
                        help="Write summary plots next to the output file")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose output")
    return parser.parse_args(argv)


def build_overrides(args) -> dict:
    """Configuration values set on the command line."""
    overrides: dict = {}
    io = {}
    if args.input:
        io["input_file"] = args.input
    if args.output:
        io["output_file"] = args.output
    if io:
        overrides["io"] = io
    if args.boundary_mask:
        overrides["boundary_mask"] = {"enabled": True}
    if args.plots:
        overrides["plots"] = {"enabled": True}
    return overrides


def main(argv=None) -> int:
    """Main study function; returns the process exit code."""
    args = parse_args(argv)
    logger = setup_logging(args.verbose)
    suppress_warnings()

    try:
        config = StudyConfig.load(args.config, build_overrides(args))
        result = DeltaPtCutStudy(config).run()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except DataLoadError as e:
        logger.error(f"Cannot read input: {e}")
        return EXIT_DATA_ERROR
    except AnalysisError as e:
        logger.error(f"Study failed: {e}")
        return EXIT_DATA_ERROR

    if not result.complete:
        logger.warning("Study finished with partial results; see the pass summary above")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
