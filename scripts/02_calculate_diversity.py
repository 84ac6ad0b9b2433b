#!/usr/bin/env python3
"""
Calculate and analyze alpha and beta diversity of the eDNA abundance data.

This script:
1. Loads the abundance matrix and sample metadata from the reshaping step
2. Calculates alpha diversity metrics (Richness, Shannon, Simpson)
3. Compares alpha diversity between groups
4. Calculates the Bray-Curtis dissimilarity matrix
5. Runs NMDS and PCoA ordinations
6. Performs PERMANOVA to test for community composition differences
7. Generates boxplots and ordination plots

Usage:
    python scripts/02_calculate_diversity.py [--config CONFIG_FILE] [--workdir DIR]
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
    calculate_alpha_diversity,
    calculate_bray_curtis,
    compare_alpha_diversity,
    load_abundance_matrix,
    load_config,
    load_metadata,
    log_print,
    perform_permanova,
    run_nmds,
    run_pcoa,
    setup_logger,
)
from edna_tools.edna_diversity import distance_matrix_to_frame
from edna_tools.edna_viz import plot_alpha_diversity_boxplot, plot_ordination, save_figure


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Calculate and analyze eDNA diversity')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--workdir', type=str, default='.',
                        help='Working directory that relative paths are resolved against')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory to save results (override config)')
    parser.add_argument('--permutations', type=int, default=None,
                        help='Number of PERMANOVA permutations (override config)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def ordination_table(ordination):
    """Flatten an ordination result into a coordinate table."""
    table = ordination['coordinates'].copy()
    table.index.name = 'Sample'
    return table


def main():
    """Main function to calculate diversity metrics."""
    args = parse_args()
    setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))

    project_root = Path(args.workdir).resolve()

    try:
        config = load_config(project_root / args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log_print(f"Error loading configuration: {e}", level="error")
        sys.exit(1)

    diversity_config = config['diversity']
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
    log_print(f"Abundance data: {abundance_df.shape[0]} samples, {abundance_df.shape[1]} species")

    missing = [s for s in abundance_df.index if s not in metadata_df.index]
    if missing:
        log_print(f"Samples without metadata: {', '.join(missing[:10])}", level="error")
        sys.exit(1)

    # Alpha diversity
    log_print("Calculating alpha diversity metrics...")
    alpha_df = calculate_alpha_diversity(abundance_df)
    alpha_df.join(metadata_df[group_column]).to_csv(tables_dir / 'alpha_diversity.csv')

    try:
        alpha_stats = compare_alpha_diversity(alpha_df, metadata_df, group_column)
        alpha_stats.to_csv(tables_dir / 'alpha_diversity_tests.csv', index=False)
        for _, row in alpha_stats.iterrows():
            log_print(f"  {row['Metric']}: {row['Test']} p={row['P-value']:.4g} (adj {row['Adjusted P-value']:.4g})")
    except ValueError as e:
        log_print(f"Skipping alpha diversity comparison: {e}", level="warning")

    figures = plot_alpha_diversity_boxplot(alpha_df, metadata_df, group_column)
    for metric, fig in figures.items():
        save_figure(fig, figures_dir / f'alpha_{metric.lower()}_boxplot.{fmt}', dpi=dpi)

    # Beta diversity
    log_print("Calculating Bray-Curtis dissimilarity...")
    beta_dm = calculate_bray_curtis(abundance_df)
    distance_matrix_to_frame(beta_dm).to_csv(tables_dir / 'bray_curtis_distance.csv')

    permutations = args.permutations if args.permutations is not None else diversity_config['permutations']
    permanova = perform_permanova(beta_dm, metadata_df, variable=group_column,
                                  permutations=permutations, seed=diversity_config['seed'])
    pd.DataFrame([permanova]).to_csv(tables_dir / 'permanova.csv', index=False)
    log_print(f"PERMANOVA ({group_column}): pseudo-F={permanova['test-statistic']:.4f}, "
              f"p={permanova['p-value']:.4f}, R2={permanova['R2']:.4f} ({permanova['note']})")

    # Ordination
    try:
        nmds = run_nmds(
            beta_dm,
            trymax=diversity_config['nmds_trymax'],
            max_iter=diversity_config['nmds_max_iter'],
            stress_threshold=diversity_config['nmds_stress_threshold'],
            random_state=diversity_config['seed'],
            n_jobs=diversity_config['n_jobs']
        )
    except EdnaToolsError as e:
        log_print(f"Skipping NMDS: {e}", level="warning")
    else:
        ordination_table(nmds).to_csv(tables_dir / 'nmds_coordinates.csv')
        if not nmds['converged']:
            log_print(f"NMDS did not converge (stress {nmds['stress']:.3f}); interpret with care", level="warning")
        fig = plot_ordination(nmds, metadata_df, group_column, permanova=permanova)
        save_figure(fig, figures_dir / f'nmds_{group_column}.{fmt}', dpi=dpi)

    pcoa = run_pcoa(beta_dm)
    ordination_table(pcoa).to_csv(tables_dir / 'pcoa_coordinates.csv')
    if pcoa['negative_eigenvalues'].size:
        log_print(f"PCoA: {pcoa['negative_eigenvalues'].size} negative eigenvalues ignored", level="warning")
    fig = plot_ordination(pcoa, metadata_df, group_column, permanova=permanova)
    save_figure(fig, figures_dir / f'pcoa_{group_column}.{fmt}', dpi=dpi)

    log_print(f"Diversity analysis complete. Results saved to {results_dir}")


if __name__ == '__main__':
    main()
