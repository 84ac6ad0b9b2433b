"""
eDNA analysis toolkit for taxonomic abundance and survey data.

This module provides functions for reshaping eDNA taxonomic tables,
diversity metrics, ordination, PERMANOVA, differential abundance testing,
bootstrap classification metrics and group comparisons.

Usage:
    from edna_tools import reshape_taxon_table, calculate_alpha_diversity, ...
"""

__version__ = '0.1.0'

from .exceptions import (
    EdnaToolsError,
    ParseError,
    UnknownGroupError,
    DegenerateInputError,
    ConvergenceWarning,
    ModelFitWarning
)

from .logger import setup_logger, log_print

from .edna_utils import (
    load_config,
    load_taxon_table,
    load_abundance_matrix,
    load_metadata,
    load_group_map,
    load_cover_data,
    load_confusion_matrix,
    parse_abundance_value,
    assign_groups,
    reshape_taxon_table,
    filter_low_abundance
)

from .edna_diversity import (
    calculate_alpha_diversity,
    compare_alpha_diversity,
    calculate_bray_curtis
)

from .edna_ordination import run_nmds, run_pcoa

from .edna_stats import (
    perform_permanova,
    kruskal_wallis_test,
    dunn_posthoc,
    compact_letter_display,
    compare_groups
)

from .edna_differential import (
    to_pseudo_counts,
    benjamini_hochberg,
    differential_abundance_analysis,
    write_differential_results
)

from .edna_bootstrap import (
    confusion_to_labels,
    classification_metrics,
    bootstrap_metrics
)

__all__ = [
    'EdnaToolsError',
    'ParseError',
    'UnknownGroupError',
    'DegenerateInputError',
    'ConvergenceWarning',
    'ModelFitWarning',
    'setup_logger',
    'log_print',
    'load_config',
    'load_taxon_table',
    'load_abundance_matrix',
    'load_metadata',
    'load_group_map',
    'load_cover_data',
    'load_confusion_matrix',
    'parse_abundance_value',
    'assign_groups',
    'reshape_taxon_table',
    'filter_low_abundance',
    'calculate_alpha_diversity',
    'compare_alpha_diversity',
    'calculate_bray_curtis',
    'run_nmds',
    'run_pcoa',
    'perform_permanova',
    'kruskal_wallis_test',
    'dunn_posthoc',
    'compact_letter_display',
    'compare_groups',
    'to_pseudo_counts',
    'benjamini_hochberg',
    'differential_abundance_analysis',
    'write_differential_results',
    'confusion_to_labels',
    'classification_metrics',
    'bootstrap_metrics'
]
