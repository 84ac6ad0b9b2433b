#!/usr/bin/env python3
"""
Identify differentially abundant species between two sample groups.

This script:
1. Loads the abundance matrix and sample metadata from the reshaping step
2. Converts abundances to pseudo-counts
3. Fits a negative binomial model per species with group as covariate
4. Applies Benjamini-Hochberg correction across species
5. Writes the per-species results table
6. Creates a volcano plot and a bar chart of the top species by fold change

Usage:
    python scripts/03_differential_abundance.py [--config CONFIG_FILE] [--workdir DIR]
"""

import argparse
import logging
import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')

import yaml

from edna_tools import (
    differential_abundance_analysis,
    load_abundance_matrix,
    load_config,
    load_metadata,
    log_print,
    setup_logger,
    write_differential_results,
)
from edna_tools.edna_viz import plot_top_species, plot_volcano, save_figure


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Identify differentially abundant species')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--workdir', type=str, default='.',
                        help='Working directory that relative paths are resolved against')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory to save results (override config)')
    parser.add_argument('--reference', type=str, default=None,
                        help='Reference group (override config)')
    parser.add_argument('--treatment', type=str, default=None,
                        help='Treatment group (override config)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def main():
    """Main function to identify differential species."""
    args = parse_args()
    setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))

    project_root = Path(args.workdir).resolve()

    try:
        config = load_config(project_root / args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log_print(f"Error loading configuration: {e}", level="error")
        sys.exit(1)

    da_config = config['differential_abundance']
    group_column = config['metadata']['group_column']
    dpi = config['visualization']['figure_dpi']
    fmt = config['visualization']['figure_format']

    processed_dir = project_root / config['data']['processed_dir']
    results_dir = project_root / (args.output_dir or config['output']['results_dir'])
    figures_dir = results_dir / 'figures'
    tables_dir = results_dir / 'tables'
    figures_dir.mkdir(exist_ok=True, parents=True)
    tables_dir.mkdir(exist_ok=True, parents=True)

    abundance_file = processed_dir / 'abundance_matrix.csv'
    metadata_file = processed_dir / 'sample_metadata.csv'
    for path in (abundance_file, metadata_file):
        if not path.exists():
            log_print(f"Input not found at {path}; run 01_process_edna_data.py first.", level="error")
            sys.exit(1)

    abundance_df = load_abundance_matrix(abundance_file)
    metadata_df = load_metadata(metadata_file, 'Sample')

    try:
        results_df = differential_abundance_analysis(
            abundance_df,
            metadata_df,
            group_column,
            reference=args.reference or da_config['reference_group'],
            treatment=args.treatment or da_config['treatment_group'],
            scale=da_config['pseudo_count_scale'],
            n_jobs=da_config['n_jobs']
        )
    except ValueError as e:
        log_print(f"Error running differential abundance analysis: {e}", level="error")
        sys.exit(1)

    write_differential_results(results_df, tables_dir / 'differential_abundance.csv')

    padj_threshold = da_config['padj_threshold']
    lfc_threshold = da_config['lfc_threshold']
    significant = results_df[(results_df['padj'] < padj_threshold)
                             & (results_df['log2FoldChange'].abs() > lfc_threshold)]
    n_missing = results_df['pvalue'].isna().sum()
    log_print(f"{len(significant)} of {len(results_df)} species with padj < {padj_threshold} "
              f"and |log2FC| > {lfc_threshold}; {n_missing} species without estimate")

    fig = plot_volcano(results_df, padj_threshold=padj_threshold, lfc_threshold=lfc_threshold,
                       label_padj_threshold=da_config['label_padj_threshold'])
    save_figure(fig, figures_dir / f'volcano_{group_column}.{fmt}', dpi=dpi)

    fig = plot_top_species(results_df, top_n=da_config['top_n'])
    save_figure(fig, figures_dir / f'top_species_log2fc.{fmt}', dpi=dpi)

    log_print(f"Differential abundance analysis complete. Results saved to {results_dir}")


if __name__ == '__main__':
    main()
