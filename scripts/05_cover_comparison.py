#!/usr/bin/env python3
"""
Compare percentage cover between survey groups.

This script:
1. Loads the cover survey workbook (Area, Year, Class and cover columns)
2. Builds the grouping factor from one or more categorical columns
3. Runs a Kruskal-Wallis test and Dunn's post-hoc tests (BH adjusted)
4. Derives compact letter display labels for the groups
5. Creates a boxplot annotated with the letters and Kruskal-Wallis p-value

Usage:
    python scripts/05_cover_comparison.py [--config CONFIG_FILE] [--group-columns Area,Year]
"""

import argparse
import logging
import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')

import pandas as pd
import yaml

from edna_tools import (
    EdnaToolsError,
    compare_groups,
    load_config,
    load_cover_data,
    log_print,
    setup_logger,
)
from edna_tools.edna_stats import combine_group_columns
from edna_tools.edna_viz import plot_group_comparison, save_figure


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Kruskal-Wallis and Dunn comparison of percentage cover')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--workdir', type=str, default='.',
                        help='Working directory that relative paths are resolved against')
    parser.add_argument('--cover-table', type=str, default=None,
                        help='Cover survey workbook or CSV (override config)')
    parser.add_argument('--group-columns', type=str, default=None,
                        help='Comma-separated grouping columns (override config)')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory to save results (override config)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def main():
    """Main function to compare cover between groups."""
    args = parse_args()
    setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))

    project_root = Path(args.workdir).resolve()

    try:
        config = load_config(project_root / args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log_print(f"Error loading configuration: {e}", level="error")
        sys.exit(1)

    comparison_config = config['group_comparison']
    value_column = comparison_config['value_column']
    if args.group_columns:
        group_columns = [col.strip() for col in args.group_columns.split(',')]
    else:
        group_columns = list(comparison_config['group_columns'])

    cover_file = project_root / (args.cover_table or config['data']['cover_table'])
    results_dir = project_root / (args.output_dir or config['output']['results_dir'])
    figures_dir = results_dir / 'figures'
    tables_dir = results_dir / 'tables'
    figures_dir.mkdir(exist_ok=True, parents=True)
    tables_dir.mkdir(exist_ok=True, parents=True)

    if not cover_file.exists():
        log_print(f"Cover table not found: {cover_file}", level="error")
        sys.exit(1)

    try:
        cover_df = load_cover_data(cover_file, sheet_name=config['data']['cover_sheet'],
                                   value_column=value_column)
    except (EdnaToolsError, ValueError) as e:
        log_print(f"Error loading cover table: {e}", level="error")
        sys.exit(1)

    missing = [col for col in group_columns if col not in cover_df.columns]
    if missing:
        log_print(f"Grouping columns not found: {', '.join(missing)}", level="error")
        sys.exit(1)

    grouping = combine_group_columns(cover_df, group_columns)
    group_col = grouping.name
    cover_df[group_col] = grouping
    log_print(f"Comparing {value_column} across {cover_df[group_col].nunique()} groups of {group_col}")

    try:
        comparison = compare_groups(cover_df, value_column, group_col, alpha=comparison_config['alpha'])
    except ValueError as e:
        log_print(f"Error comparing groups: {e}", level="error")
        sys.exit(1)

    kruskal = comparison['kruskal']
    log_print(f"Kruskal-Wallis: H={kruskal['statistic']:.4f}, p={kruskal['p-value']:.4g}")

    pd.DataFrame([kruskal]).to_csv(tables_dir / f'kruskal_{group_col}.csv', index=False)
    comparison['dunn'].to_csv(tables_dir / f'dunn_{group_col}.csv')
    comparison['summary'].to_csv(tables_dir / f'cld_{group_col}.csv')

    fig = plot_group_comparison(cover_df, value_column, group_col, comparison)
    save_figure(fig, figures_dir / f'{value_column.lower()}_{group_col}_boxplot.{config["visualization"]["figure_format"]}',
                dpi=config['visualization']['figure_dpi'])

    log_print(f"Group comparison complete. Results saved to {results_dir}")


if __name__ == '__main__':
    main()
