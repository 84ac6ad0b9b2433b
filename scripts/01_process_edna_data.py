#!/usr/bin/env python3
"""
Reshape the raw eDNA taxonomic table into an abundance matrix and sample metadata.

This script:
1. Loads the wide taxon table (lineage columns + one percentage column per sample)
2. Parses percentage strings into numeric abundances
3. Assigns every sample to a group from the group map or prefix table
4. Sums duplicate species records and pivots to a sample x species matrix
5. Saves the abundance matrix and sample metadata for the downstream steps

Usage:
    python scripts/01_process_edna_data.py [--config CONFIG_FILE] [--workdir DIR]
"""

import argparse
import logging
import sys
from pathlib import Path

import yaml

from edna_tools import (
    EdnaToolsError,
    filter_low_abundance,
    load_config,
    load_group_map,
    load_taxon_table,
    log_print,
    reshape_taxon_table,
    setup_logger,
)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Reshape eDNA taxonomic abundance records')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--workdir', type=str, default='.',
                        help='Working directory that relative paths are resolved against')
    parser.add_argument('--taxon-table', type=str, default=None,
                        help='Path to the raw taxon table (override config)')
    parser.add_argument('--group-map', type=str, default=None,
                        help='CSV with Sample and Group columns (override config)')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Directory for the processed tables (override config)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def main():
    """Main function to reshape the taxon table."""
    args = parse_args()
    setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))

    project_root = Path(args.workdir).resolve()

    # Load configuration
    try:
        config = load_config(project_root / args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log_print(f"Error loading configuration: {e}", level="error")
        sys.exit(1)

    data_config = config['data']
    reshape_config = config['reshaping']
    group_column = config['metadata']['group_column']

    taxon_file = project_root / (args.taxon_table or data_config['taxon_table'])
    output_dir = project_root / (args.output_dir or data_config['processed_dir'])
    group_map_file = args.group_map or data_config.get('group_map_file')

    if not taxon_file.exists():
        log_print(f"Taxon table not found: {taxon_file}", level="error")
        sys.exit(1)

    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        taxa_df = load_taxon_table(taxon_file)

        group_map = None
        if group_map_file:
            group_map = load_group_map(project_root / group_map_file, group_column=group_column)
            log_print(f"Loaded group assignments for {len(group_map)} samples from {group_map_file}")

        abundance_df, metadata_df = reshape_taxon_table(
            taxa_df,
            species_column=reshape_config['species_column'],
            lineage_columns=reshape_config['lineage_columns'],
            group_map=group_map,
            group_prefixes=config['metadata']['group_prefixes'],
            group_column=group_column
        )
    except (EdnaToolsError, ValueError) as e:
        log_print(f"Error reshaping taxon table: {e}", level="error")
        sys.exit(1)

    if reshape_config['min_prevalence'] > 0 or reshape_config['min_abundance'] > 0:
        abundance_df = filter_low_abundance(
            abundance_df,
            min_prevalence=reshape_config['min_prevalence'],
            min_abundance=reshape_config['min_abundance']
        )

    # Report group sizes
    for group, size in metadata_df[group_column].value_counts().sort_index().items():
        log_print(f"  {group}: {size} samples")

    abundance_file = output_dir / 'abundance_matrix.csv'
    metadata_file = output_dir / 'sample_metadata.csv'
    abundance_df.to_csv(abundance_file)
    metadata_df.to_csv(metadata_file)

    log_print(f"Abundance matrix: {abundance_df.shape[0]} samples x {abundance_df.shape[1]} species -> {abundance_file}")
    log_print(f"Sample metadata -> {metadata_file}")


if __name__ == '__main__':
    main()
