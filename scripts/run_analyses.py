#!/usr/bin/env python3
"""
Run the eDNA analysis steps in order.

Each step is a standalone script under scripts/; this driver runs them as
subprocesses with the shared configuration and logging options.

Usage:
    python scripts/run_analyses.py --config config/analysis_parameters.yml [--analysis all]
"""

import argparse
import logging
import subprocess
import sys
from pathlib import Path

from edna_tools import log_print, setup_logger

SCRIPT_DIR = Path(__file__).resolve().parent

STEPS = {
    "process": "01_process_edna_data.py",
    "diversity": "02_calculate_diversity.py",
    "diff-abundance": "03_differential_abundance.py",
    "bootstrap": "04_classification_bootstrap.py",
    "cover": "05_cover_comparison.py",
}


def parse_arguments():
    parser = argparse.ArgumentParser(description="Run eDNA community analyses")

    parser.add_argument(
        "--config",
        default="config/analysis_parameters.yml",
        help="Path to configuration file (YAML)"
    )

    parser.add_argument(
        "--workdir",
        default=".",
        help="Working directory passed to each step (default: current directory)"
    )

    parser.add_argument(
        "--analysis",
        choices=["all"] + list(STEPS),
        default="all",
        help="Analysis to run (default: all)"
    )

    parser.add_argument(
        "--keep-going",
        action="store_true",
        help="Continue with later steps when one fails"
    )

    parser.add_argument(
        "--log-file",
        default=None,
        help="Path to log file (default: log to console only)"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)"
    )

    return parser.parse_args()


def run_step(name, args):
    """Run one analysis script; return True when it exits cleanly."""
    cmd = [
        sys.executable, str(SCRIPT_DIR / STEPS[name]),
        "--config", args.config,
        "--workdir", args.workdir,
        "--log-level", args.log_level
    ]
    if args.log_file:
        cmd += ["--log-file", args.log_file]

    log_print(f"Running {name}: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        log_print(f"Step {name} failed with exit code {e.returncode}", level="error")
        return False
    return True


def main():
    args = parse_arguments()
    setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))
    log_print("Starting eDNA analyses")

    steps = list(STEPS) if args.analysis == "all" else [args.analysis]
    failed = []
    for name in steps:
        if not run_step(name, args):
            failed.append(name)
            if not args.keep_going:
                break

    if failed:
        log_print(f"Failed steps: {', '.join(failed)}", level="error")
        sys.exit(1)

    log_print("eDNA analyses completed")


if __name__ == "__main__":
    main()
