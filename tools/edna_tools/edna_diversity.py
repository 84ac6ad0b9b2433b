"""
Functions for calculating alpha and beta diversity metrics for eDNA abundance data.
"""

import logging

import numpy as np
import pandas as pd
import scipy.spatial.distance as ssd
from scipy import stats
from skbio.stats.distance import DistanceMatrix
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)

ALPHA_METRICS = ['Richness', 'Shannon', 'Simpson']


def calculate_alpha_diversity(abundance_df):
    """
    Calculate alpha diversity metrics for each sample.

    Richness is the number of species with non-zero abundance, Shannon is
    the natural-log entropy of the relative abundances and Simpson is
    one minus the sum of squared relative abundances. A sample with no
    abundance at all scores zero on every metric.

    Parameters:
    -----------
    abundance_df : pandas.DataFrame
        Abundance matrix with samples as rows, species as columns

    Returns:
    --------
    pandas.DataFrame
        DataFrame with alpha diversity metrics for each sample
    """
    values = abundance_df.to_numpy(dtype=float)
    if (values < 0).any():
        raise ValueError("Abundance matrix contains negative values")

    totals = values.sum(axis=1)
    richness = (values > 0).sum(axis=1)

    # Convert to relative abundance, leaving all-zero samples at zero
    proportions = np.zeros_like(values)
    nonzero = totals > 0
    proportions[nonzero] = values[nonzero] / totals[nonzero, None]

    with np.errstate(divide='ignore', invalid='ignore'):
        log_p = np.where(proportions > 0, np.log(proportions), 0.0)
    shannon = -(proportions * log_p).sum(axis=1)
    simpson = np.where(nonzero, 1.0 - (proportions ** 2).sum(axis=1), 0.0)

    alpha_div = pd.DataFrame({
        'Richness': richness.astype(int),
        # Clip -0.0 from single-species samples
        'Shannon': np.maximum(shannon, 0.0),
        'Simpson': simpson,
    }, index=abundance_df.index)

    if (~nonzero).any():
        logger.debug(f"{(~nonzero).sum()} samples have zero total abundance; diversity set to 0")

    return alpha_div


def compare_alpha_diversity(alpha_df, metadata_df, group_var):
    """
    Compare alpha diversity metrics between groups.

    Uses a Mann-Whitney U test for two groups and a Kruskal-Wallis test for
    more, adjusting p-values across metrics with Benjamini-Hochberg.

    Parameters:
    -----------
    alpha_df : pandas.DataFrame
        Alpha diversity DataFrame with samples as index
    metadata_df : pandas.DataFrame
        Metadata DataFrame with samples as index
    group_var : str
        Grouping variable in metadata

    Returns:
    --------
    pandas.DataFrame
        One row per metric with the test used, statistic and p-values
    """
    common_samples = [s for s in alpha_df.index if s in metadata_df.index]
    groups = metadata_df.loc[common_samples, group_var].astype(str)
    unique_groups = list(pd.unique(groups))

    if len(unique_groups) < 2:
        raise ValueError(f"Need at least 2 groups in '{group_var}' to compare alpha diversity")

    results = []
    for metric in alpha_df.columns:
        values = [alpha_df.loc[groups.index[groups == group], metric].to_numpy() for group in unique_groups]
        if len(unique_groups) == 2:
            test = 'Mann-Whitney U'
            statistic, p_value = stats.mannwhitneyu(values[0], values[1], alternative='two-sided')
        else:
            test = 'Kruskal-Wallis'
            try:
                statistic, p_value = stats.kruskal(*values)
            except ValueError:
                # All values identical
                statistic, p_value = np.nan, 1.0

        row = {'Metric': metric, 'Test': test, 'Statistic': statistic, 'P-value': p_value}
        for group, group_values in zip(unique_groups, values):
            row[f'Median in {group}'] = np.median(group_values)
        results.append(row)

    results_df = pd.DataFrame(results)
    p_values = results_df['P-value'].fillna(1.0)
    results_df['Adjusted P-value'] = multipletests(p_values, method='fdr_bh')[1]
    return results_df


def calculate_bray_curtis(abundance_df):
    """
    Calculate the pairwise Bray-Curtis dissimilarity between samples.

    d(i, j) = 1 - 2 * sum(min(x_i, x_j)) / sum(x_i + x_j); two samples with
    no abundance at all are at distance 0.

    Parameters:
    -----------
    abundance_df : pandas.DataFrame
        Abundance matrix with samples as rows, species as columns

    Returns:
    --------
    skbio.DistanceMatrix
        Symmetric, zero-diagonal dissimilarity matrix
    """
    values = abundance_df.to_numpy(dtype=float)
    if (values < 0).any():
        raise ValueError("Bray-Curtis requires non-negative abundances")

    if values.shape[0] < 2:
        distances = np.zeros((values.shape[0], values.shape[0]))
    else:
        with np.errstate(divide='ignore', invalid='ignore'):
            condensed = ssd.pdist(values, metric='braycurtis')
        # 0/0 from pairs of empty samples
        condensed = np.nan_to_num(condensed, nan=0.0)
        distances = ssd.squareform(np.clip(condensed, 0.0, 1.0))

    ids = [str(sample) for sample in abundance_df.index]
    return DistanceMatrix(distances, ids=ids)


def distance_matrix_to_frame(distance_matrix):
    """Convert a DistanceMatrix into a labelled square DataFrame."""
    return pd.DataFrame(distance_matrix.data, index=list(distance_matrix.ids),
                        columns=list(distance_matrix.ids))
