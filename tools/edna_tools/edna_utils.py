"""
Utility functions for loading and reshaping eDNA taxonomic abundance data.
"""

import copy
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import yaml

from .exceptions import ParseError, UnknownGroupError

logger = logging.getLogger(__name__)

LINEAGE_COLUMNS = ['Domain', 'Phylum', 'Class', 'Order', 'Family', 'Genus', 'Species']

MISSING_VALUES = {'', 'na', 'nan', 'none'}

DEFAULT_CONFIG = {
    'data': {
        'taxon_table': 'data/raw/edna_taxa.csv',
        'processed_dir': 'data/processed',
        'group_map_file': None,
        'cover_table': 'data/raw/cover_survey.xlsx',
        'cover_sheet': 0,
        'confusion_matrix': 'data/raw/confusion_matrix.csv',
    },
    'metadata': {
        'group_column': 'Group',
        'group_prefixes': {},
    },
    'reshaping': {
        'species_column': 'Species',
        'lineage_columns': LINEAGE_COLUMNS,
        'min_prevalence': 0.0,
        'min_abundance': 0.0,
    },
    'diversity': {
        'nmds_trymax': 20,
        'nmds_max_iter': 300,
        'nmds_stress_threshold': 0.2,
        'permutations': 999,
        'seed': 42,
        'n_jobs': 1,
    },
    'differential_abundance': {
        'pseudo_count_scale': 1e6,
        'reference_group': None,
        'treatment_group': None,
        'padj_threshold': 0.05,
        'label_padj_threshold': 0.01,
        'lfc_threshold': 1.0,
        'top_n': 20,
        'n_jobs': 1,
    },
    'bootstrap': {
        'iterations': 2000,
        'confidence': 0.95,
        'seed': 42,
        'n_jobs': 1,
    },
    'group_comparison': {
        'value_column': 'Cover',
        'group_columns': ['Class'],
        'alpha': 0.05,
    },
    'visualization': {
        'figure_dpi': 300,
        'figure_format': 'png',
    },
    'output': {
        'results_dir': 'results',
    },
}


def _deep_update(base, overrides):
    """Recursively merge ``overrides`` into ``base`` in place."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_path=None):
    """
    Load analysis parameters from a YAML file on top of the defaults.

    Parameters:
    -----------
    config_path : str or Path, optional
        Path to the YAML configuration file. When omitted the built-in
        defaults are returned.

    Returns:
    --------
    dict
        Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path is None:
        return config

    with open(config_path, 'r') as f:
        user_config = yaml.safe_load(f) or {}

    if not isinstance(user_config, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")

    return _deep_update(config, user_config)


def _read_table(filepath, sheet_name=0, **kwargs):
    """Read a CSV, TSV or Excel file based on its suffix."""
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix in ('.xlsx', '.xls'):
        return pd.read_excel(filepath, sheet_name=sheet_name, **kwargs)
    if suffix in ('.tsv', '.txt'):
        return pd.read_csv(filepath, sep='\t', **kwargs)
    return pd.read_csv(filepath, **kwargs)


def load_taxon_table(filepath, sheet_name=0):
    """
    Load a wide taxonomic abundance table.

    Parameters:
    -----------
    filepath : str or Path
        CSV, TSV or Excel file with lineage columns and one abundance
        column per sample
    sheet_name : str or int
        Worksheet to read for Excel input

    Returns:
    --------
    pandas.DataFrame
        Raw taxon table with one row per taxon record
    """
    taxa_df = _read_table(filepath, sheet_name=sheet_name)
    if taxa_df.shape[0] == 0 or taxa_df.shape[1] == 0:
        raise ValueError(f"Taxon table has {taxa_df.shape[0]} rows and {taxa_df.shape[1]} columns")

    taxa_df.columns = [str(col).strip() for col in taxa_df.columns]
    logger.info(f"Loaded taxon table from {filepath}: {taxa_df.shape[0]} records, {taxa_df.shape[1]} columns")
    return taxa_df


def load_metadata(filepath, sample_id_column='Sample'):
    """
    Load metadata from a CSV file.

    Parameters:
    -----------
    filepath : str or Path
        Path to the metadata file
    sample_id_column : str
        Column name for sample IDs

    Returns:
    --------
    pandas.DataFrame
        Metadata DataFrame with sample IDs as index
    """
    metadata_df = _read_table(filepath)

    # Check if the sample ID column exists
    if sample_id_column not in metadata_df.columns:
        raise ValueError(f"Sample ID column '{sample_id_column}' not found in metadata")

    # Set index and remove any duplicate sample IDs
    metadata_df[sample_id_column] = metadata_df[sample_id_column].astype(str).str.strip()
    metadata_df = metadata_df.set_index(sample_id_column)
    if metadata_df.index.duplicated().any():
        logger.warning(f"Found {metadata_df.index.duplicated().sum()} duplicate sample IDs in metadata, keeping first")
        metadata_df = metadata_df[~metadata_df.index.duplicated(keep='first')]

    # Convert categorical variables to string
    for col in metadata_df.columns:
        if metadata_df[col].dtype == 'object' or metadata_df[col].dtype.name == 'category':
            metadata_df[col] = metadata_df[col].astype(str).str.strip()

    return metadata_df


def load_group_map(filepath, sample_id_column='Sample', group_column='Group'):
    """Load an explicit sample -> group mapping from a two-column table."""
    metadata_df = load_metadata(filepath, sample_id_column)
    if group_column not in metadata_df.columns:
        raise ValueError(f"Group column '{group_column}' not found in {filepath}")
    return metadata_df[group_column].astype(str).to_dict()


def parse_abundance_value(value, column=None, species=None):
    """
    Parse a single raw abundance value.

    Surrounding whitespace and a trailing percent sign are stripped. Empty
    cells count as zero abundance.

    Parameters:
    -----------
    value : str or float
        Raw cell value, e.g. ``"12.5%"``
    column : str, optional
        Sample column the value came from (used in error messages)
    species : str, optional
        Species of the record (used in error messages)

    Returns:
    --------
    float
        Non-negative abundance
    """
    if value is None:
        return 0.0

    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        if np.isnan(value):
            return 0.0
        number = float(value)
    else:
        text = str(value).strip().removesuffix('%').strip()
        if text.lower() in MISSING_VALUES:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            raise ParseError(value, column=column, species=species) from None

    if not np.isfinite(number) or number < 0:
        raise ParseError(value, column=column, species=species)
    return number


def parse_abundance_columns(taxa_df, sample_columns, species_column='Species'):
    """
    Parse every sample abundance column of a taxon table to floats.

    Parameters:
    -----------
    taxa_df : pandas.DataFrame
        Raw taxon table
    sample_columns : list
        Columns holding per-sample abundances
    species_column : str
        Column used to name the offending record in errors

    Returns:
    --------
    pandas.DataFrame
        Float abundances with the same index as ``taxa_df``
    """
    if species_column in taxa_df.columns:
        species = taxa_df[species_column]
    else:
        species = pd.Series(taxa_df.index, index=taxa_df.index)

    parsed = pd.DataFrame(index=taxa_df.index)
    for column in sample_columns:
        raw = taxa_df[column]
        text = raw.astype(str).str.strip().str.removesuffix('%').str.strip()
        missing = raw.isna() | text.str.lower().isin(MISSING_VALUES)
        numbers = pd.to_numeric(text.where(~missing, '0'), errors='coerce')

        bad = numbers.isna() | ~np.isfinite(numbers.fillna(0)) | (numbers < 0)
        if bad.any():
            first = bad[bad].index[0]
            raise ParseError(raw.loc[first], column=column, species=species.loc[first])

        parsed[column] = numbers.astype(float)

    return parsed


def assign_groups(samples, group_map=None, group_prefixes=None):
    """
    Assign each sample to exactly one group.

    An explicit ``group_map`` entry wins; otherwise the longest matching
    prefix from ``group_prefixes`` decides.

    Parameters:
    -----------
    samples : iterable
        Sample identifiers
    group_map : dict, optional
        Explicit sample -> group mapping
    group_prefixes : dict or list, optional
        Prefix -> group table; a list means each prefix is its own group

    Returns:
    --------
    pandas.Series
        Group label indexed by sample
    """
    if group_map is None and not group_prefixes:
        raise ValueError("Either a sample -> group mapping or a group prefix table is required")

    if group_prefixes is None:
        group_prefixes = {}
    elif not isinstance(group_prefixes, dict):
        group_prefixes = {prefix: prefix for prefix in group_prefixes}

    # Longest prefix first so 'CFA1' beats 'CFA'
    prefixes = sorted(group_prefixes.items(), key=lambda item: len(str(item[0])), reverse=True)
    known = sorted(set(map(str, group_prefixes.values())) | set(map(str, (group_map or {}).values())))

    groups = {}
    for sample in samples:
        sample = str(sample)
        if group_map is not None and sample in group_map:
            groups[sample] = str(group_map[sample])
            continue
        for prefix, group in prefixes:
            if sample.startswith(str(prefix)):
                groups[sample] = str(group)
                break
        else:
            raise UnknownGroupError(sample, known=known)

    return pd.Series(groups, name='Group', dtype=object)


def reshape_taxon_table(taxa_df, sample_columns=None, species_column='Species',
                        lineage_columns=None, group_map=None, group_prefixes=None,
                        group_column='Group'):
    """
    Reshape a wide taxon table into a sample x species abundance matrix.

    Steps: parse abundance strings, unpivot sample columns into
    (sample, species, abundance) records tagged with their group, sum
    duplicate (sample, species) pairs and pivot back to a dense matrix.

    Parameters:
    -----------
    taxa_df : pandas.DataFrame
        Raw taxon table, one row per taxon record
    sample_columns : list, optional
        Sample abundance columns (default: every non-lineage column)
    species_column : str
        Column naming the species of each record
    lineage_columns : list, optional
        Taxonomic lineage columns (default: Domain ... Species)
    group_map : dict, optional
        Explicit sample -> group mapping
    group_prefixes : dict or list, optional
        Prefix -> group table used for samples missing from ``group_map``
    group_column : str
        Name of the group column in the returned metadata

    Returns:
    --------
    tuple of pandas.DataFrame
        (abundance matrix with samples as rows and species as columns,
        metadata with samples as index and a group column)
    """
    lineage_columns = list(lineage_columns) if lineage_columns is not None else list(LINEAGE_COLUMNS)
    if species_column not in taxa_df.columns:
        raise ValueError(f"Species column '{species_column}' not found in taxon table")

    if sample_columns is None:
        sample_columns = [col for col in taxa_df.columns
                          if col not in lineage_columns and col != species_column]
    sample_columns = list(sample_columns)
    if not sample_columns:
        raise ValueError("No sample abundance columns found in taxon table")

    # Drop records without a species name
    named = taxa_df[species_column].notna()
    if not named.all():
        logger.warning(f"Dropping {(~named).sum()} records without a {species_column} name")
    taxa_df = taxa_df.loc[named]

    parsed = parse_abundance_columns(taxa_df, sample_columns, species_column)
    parsed.columns = [str(col) for col in parsed.columns]
    parsed[species_column] = taxa_df[species_column].astype(str).str.strip().values

    sample_ids = [str(col) for col in sample_columns]
    groups = assign_groups(sample_ids, group_map=group_map, group_prefixes=group_prefixes)

    # Unpivot to long format
    long_df = parsed.melt(id_vars=species_column, value_vars=sample_ids,
                          var_name='Sample', value_name='Abundance')
    long_df[group_column] = long_df['Sample'].map(groups)

    sample_order = pd.unique(long_df['Sample'])
    species_order = pd.unique(long_df[species_column])

    # Sum duplicate species records within a sample
    aggregated = long_df.groupby(['Sample', species_column], sort=False)['Abundance'].sum()

    abundance_df = (
        aggregated.unstack(fill_value=0.0)
        .reindex(index=sample_order, columns=species_order)
        .fillna(0.0)
        .astype(float)
    )
    abundance_df.index.name = 'Sample'
    abundance_df.columns.name = None

    metadata_df = long_df[['Sample', group_column]].drop_duplicates(subset='Sample', keep='first')
    metadata_df = metadata_df.set_index('Sample').loc[sample_order]

    logger.info(f"Reshaped {len(taxa_df)} taxon records into {abundance_df.shape[0]} samples x "
                f"{abundance_df.shape[1]} species")
    return abundance_df, metadata_df


def load_abundance_matrix(filepath):
    """
    Load a processed abundance matrix written by the reshaping step.

    Parameters:
    -----------
    filepath : str or Path
        CSV with sample IDs in the first column and one column per species

    Returns:
    --------
    pandas.DataFrame
        Abundance matrix with samples as rows, species as columns
    """
    abundance_df = pd.read_csv(filepath, index_col=0)
    abundance_df.index = abundance_df.index.astype(str)
    abundance_df.index.name = 'Sample'

    non_numeric = [col for col in abundance_df.columns if not pd.api.types.is_numeric_dtype(abundance_df[col])]
    if non_numeric:
        raise ValueError(f"Abundance matrix has non-numeric columns: {', '.join(non_numeric[:5])}")

    return abundance_df.fillna(0.0)


def filter_low_abundance(abundance_df, min_prevalence=0.1, min_abundance=0.01):
    """
    Filter out low abundance and low prevalence species.

    Parameters:
    -----------
    abundance_df : pandas.DataFrame
        Abundance matrix with samples as rows, species as columns
    min_prevalence : float
        Minimum fraction of samples in which a species must be present
    min_abundance : float
        Minimum mean abundance a species must have

    Returns:
    --------
    pandas.DataFrame
        Filtered abundance matrix
    """
    # Calculate prevalence (fraction of samples where species is present)
    prevalence = (abundance_df > 0).mean(axis=0)

    # Calculate mean abundance
    mean_abundance = abundance_df.mean(axis=0)

    # Filter based on thresholds
    keep_species = (prevalence >= min_prevalence) & (mean_abundance >= min_abundance)

    logger.info(f"Filtering from {abundance_df.shape[1]} to {keep_species.sum()} species "
                f"(prevalence >= {min_prevalence:.2f}, mean abundance >= {min_abundance:.4f})")

    return abundance_df.loc[:, keep_species]


def load_cover_data(filepath, sheet_name=0, value_column='Cover', category_columns=('Area', 'Year', 'Class')):
    """
    Load the percentage-cover survey table.

    Parameters:
    -----------
    filepath : str or Path
        Excel workbook (or CSV) with categorical columns and a cover column
    sheet_name : str or int
        Worksheet to read
    value_column : str
        Column with the percentage-cover measurement
    category_columns : sequence
        Categorical columns kept as strings

    Returns:
    --------
    pandas.DataFrame
        Survey table with a float cover column; rows without a
        measurement are dropped
    """
    cover_df = _read_table(filepath, sheet_name=sheet_name)
    cover_df.columns = [str(col).strip() for col in cover_df.columns]

    missing = [col for col in [value_column, *category_columns] if col not in cover_df.columns]
    if missing:
        raise ValueError(f"Columns not found in cover table: {', '.join(missing)}")

    for col in category_columns:
        cover_df[col] = cover_df[col].astype(str).str.strip()

    measured = cover_df[value_column].notna()
    if not measured.all():
        logger.warning(f"Dropping {(~measured).sum()} cover records without a {value_column} value")
    cover_df = cover_df.loc[measured].copy()

    cover_df[value_column] = [
        parse_abundance_value(value, column=value_column)
        for value in cover_df[value_column]
    ]
    return cover_df.reset_index(drop=True)


def load_confusion_matrix(filepath):
    """
    Load a confusion matrix with true labels as rows and predictions as columns.

    Parameters:
    -----------
    filepath : str or Path
        CSV/TSV file whose first column holds the true class labels

    Returns:
    --------
    pandas.DataFrame
        Square integer count matrix
    """
    confusion_df = _read_table(filepath, index_col=0)
    confusion_df.index = confusion_df.index.astype(str).str.strip()
    confusion_df.columns = confusion_df.columns.astype(str).str.strip()
    return confusion_df
