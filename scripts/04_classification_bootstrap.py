#!/usr/bin/env python3
"""
Bootstrap confidence intervals for sample-classification metrics.

This script:
1. Loads a confusion matrix (true classes as rows, predictions as columns)
2. Expands it into per-sample label pairs
3. Computes accuracy, macro-F1, weighted-F1 and Matthews correlation
4. Resamples the label pairs with replacement to get percentile intervals

Usage:
    python scripts/04_classification_bootstrap.py [--config CONFIG_FILE] [--confusion-matrix FILE]
"""

import argparse
import logging
import sys
from pathlib import Path

import yaml

from edna_tools import (
    EdnaToolsError,
    bootstrap_metrics,
    load_config,
    load_confusion_matrix,
    log_print,
    setup_logger,
)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Bootstrap classification metrics from a confusion matrix')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--workdir', type=str, default='.',
                        help='Working directory that relative paths are resolved against')
    parser.add_argument('--confusion-matrix', type=str, default=None,
                        help='Confusion matrix CSV (override config)')
    parser.add_argument('--iterations', type=int, default=None,
                        help='Number of bootstrap replicates (override config)')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory to save results (override config)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def main():
    """Main function to bootstrap classification metrics."""
    args = parse_args()
    setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))

    project_root = Path(args.workdir).resolve()

    try:
        config = load_config(project_root / args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log_print(f"Error loading configuration: {e}", level="error")
        sys.exit(1)

    bootstrap_config = config['bootstrap']
    confusion_file = project_root / (args.confusion_matrix or config['data']['confusion_matrix'])
    tables_dir = project_root / (args.output_dir or config['output']['results_dir']) / 'tables'
    tables_dir.mkdir(exist_ok=True, parents=True)

    if not confusion_file.exists():
        log_print(f"Confusion matrix not found: {confusion_file}", level="error")
        sys.exit(1)

    try:
        confusion_df = load_confusion_matrix(confusion_file)
        summary, replicates = bootstrap_metrics(
            confusion_df,
            n_bootstrap=args.iterations or bootstrap_config['iterations'],
            confidence=bootstrap_config['confidence'],
            seed=bootstrap_config['seed'],
            n_jobs=bootstrap_config['n_jobs'],
            return_replicates=True
        )
    except (EdnaToolsError, ValueError) as e:
        log_print(f"Error bootstrapping metrics: {e}", level="error")
        sys.exit(1)

    summary.to_csv(tables_dir / 'classification_metrics_bootstrap.csv')
    replicates.to_csv(tables_dir / 'classification_metrics_replicates.csv', index=False)

    level = int(round(bootstrap_config['confidence'] * 100))
    for metric, row in summary.iterrows():
        log_print(f"  {metric}: {row['estimate']:.3f} ({level}% CI {row['ci_lower']:.3f}-{row['ci_upper']:.3f})")

    log_print(f"Bootstrap results saved to {tables_dir}")


if __name__ == '__main__':
    main()
