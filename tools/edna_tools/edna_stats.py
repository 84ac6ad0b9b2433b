"""
Statistical tests for eDNA data: PERMANOVA and non-parametric group comparisons.
"""

import logging
import string

import networkx as nx
import numpy as np
import pandas as pd
import scikit_posthocs as sp
from scipy import stats
from skbio.stats.distance import permanova

logger = logging.getLogger(__name__)


def _permanova_r2(d, codes, group_sizes):
    """Share of the total sum of squared dissimilarities lying among groups."""
    n = len(codes)
    pair_i, pair_j = np.triu_indices(n, k=1)
    sq_distances = d[pair_i, pair_j] ** 2
    s_total = sq_distances.sum() / n
    if s_total == 0:
        return np.nan
    same = codes[pair_i] == codes[pair_j]
    s_within = (sq_distances[same] / group_sizes[codes[pair_i][same]]).sum()
    return 1 - s_within / s_total


def perform_permanova(distance_matrix, metadata_df, variable='Group', permutations=999, seed=42):
    """
    Perform PERMANOVA test to see if grouping variable explains community differences.

    Uses scikit-bio's permanova on the samples present in both the matrix
    and the metadata. R2 is the among-group share of the total sum of
    squared dissimilarities.

    Parameters:
    -----------
    distance_matrix : skbio.DistanceMatrix
        Beta diversity distance matrix
    metadata_df : pandas.DataFrame
        Metadata DataFrame with samples as index
    variable : str
        Grouping variable in metadata; no other column is used
    permutations : int
        Number of permutations to use
    seed : int
        Seed for the permutation generator

    Returns:
    --------
    dict
        PERMANOVA results
    """
    # Filter metadata to include only samples in distance matrix, keeping matrix order
    common_samples = [s for s in distance_matrix.ids if s in metadata_df.index]
    result = {
        'method name': 'PERMANOVA',
        'test statistic name': 'pseudo-F',
        'test-statistic': np.nan,
        'p-value': np.nan,
        'R2': np.nan,
        'sample size': len(common_samples),
        'number of groups': 0,
        'permutations': permutations,
        'note': 'Successful test',
    }

    if len(common_samples) < len(distance_matrix.ids):
        logger.warning(f"{len(distance_matrix.ids) - len(common_samples)} samples have no '{variable}' metadata "
                       f"and are excluded from PERMANOVA")

    grouping = metadata_df.loc[common_samples, variable].astype(str).to_numpy()
    unique_groups, codes = np.unique(grouping, return_inverse=True)
    group_sizes = np.bincount(codes).astype(float)
    result['number of groups'] = len(unique_groups)

    # Check that we have at least two groups with 2+ samples
    if len(unique_groups) < 2:
        result['note'] = f'Only one group found in {variable}'
        return result
    if (group_sizes < 2).any():
        result['note'] = f'At least one group in {variable} has fewer than 2 samples'
        return result

    filtered_dm = distance_matrix.filter(common_samples)
    result['R2'] = _permanova_r2(filtered_dm.data, codes, group_sizes)
    if np.isnan(result['R2']):
        result['note'] = 'All dissimilarities are zero'
        return result

    results = permanova(filtered_dm, list(grouping), permutations=permutations, seed=seed)
    result['test-statistic'] = float(results['test statistic'])
    result['p-value'] = float(results['p-value'])
    if permutations == 0:
        result['note'] = 'No permutations run; p-value not computed'

    logger.info(f"PERMANOVA on {variable}: pseudo-F={result['test-statistic']:.4f}, p={result['p-value']:.4f}, "
                f"n={len(common_samples)}, groups={len(unique_groups)}")
    return result


def combine_group_columns(data_df, columns, sep='_'):
    """Join several categorical columns into one grouping factor, e.g. Area_Year."""
    columns = [columns] if isinstance(columns, str) else list(columns)
    combined = data_df[columns[0]].astype(str)
    for col in columns[1:]:
        combined = combined + sep + data_df[col].astype(str)
    combined.name = sep.join(columns)
    return combined


def kruskal_wallis_test(data_df, value_col, group_col):
    """
    Kruskal-Wallis H test of a continuous measurement across groups.

    Parameters:
    -----------
    data_df : pandas.DataFrame
        Long-format table with one measurement per row
    value_col : str
        Column with the measurement
    group_col : str
        Column with the group label

    Returns:
    --------
    dict
        Test statistic, p-value, number of groups and sample size
    """
    grouped = [group[value_col].to_numpy(dtype=float)
               for _, group in data_df.groupby(group_col, sort=True)]
    result = {
        'statistic': np.nan,
        'p-value': np.nan,
        'number of groups': len(grouped),
        'sample size': int(sum(len(values) for values in grouped)),
    }

    if len(grouped) < 2:
        raise ValueError(f"Kruskal-Wallis needs at least 2 groups in '{group_col}', found {len(grouped)}")

    try:
        statistic, p_value = stats.kruskal(*grouped)
    except ValueError as e:
        # All values identical
        logger.warning(f"Kruskal-Wallis on {value_col} by {group_col} not computed: {e}")
        return result

    result['statistic'] = float(statistic)
    result['p-value'] = float(p_value)
    return result


def dunn_posthoc(data_df, value_col, group_col, p_adjust='fdr_bh'):
    """Pairwise Dunn's tests; returns a square DataFrame of adjusted p-values."""
    pvalues = sp.posthoc_dunn(data_df, val_col=value_col, group_col=group_col, p_adjust=p_adjust)
    pvalues.index = pvalues.index.astype(str)
    pvalues.columns = pvalues.columns.astype(str)
    return pvalues


def _letter(index):
    alphabet = string.ascii_lowercase + string.ascii_uppercase
    if index < len(alphabet):
        return alphabet[index]
    return f"{alphabet[index % len(alphabet)]}{index // len(alphabet)}"


def compact_letter_display(pvalue_matrix, alpha=0.05, group_order=None):
    """
    Compact letter display from a matrix of pairwise adjusted p-values.

    Groups that are not significantly different (p > alpha) are linked;
    every maximal clique of that graph receives one letter, so two groups
    share a letter exactly when they do not differ. Letters are handed out
    following ``group_order``.

    Parameters:
    -----------
    pvalue_matrix : pandas.DataFrame
        Square matrix of adjusted p-values indexed by group
    alpha : float
        Significance threshold
    group_order : list, optional
        Order in which groups receive letters (default: matrix order)

    Returns:
    --------
    pandas.Series
        Letters indexed by group
    """
    groups = list(group_order) if group_order is not None else list(pvalue_matrix.index)
    position = {group: i for i, group in enumerate(groups)}

    graph = nx.Graph()
    graph.add_nodes_from(groups)
    for i, first in enumerate(groups):
        for second in groups[i + 1:]:
            p_value = pvalue_matrix.loc[first, second]
            # An undefined comparison cannot separate the groups
            if not p_value <= alpha:
                graph.add_edge(first, second)

    cliques = [sorted(clique, key=position.get) for clique in nx.find_cliques(graph)]
    cliques.sort(key=lambda clique: [position[group] for group in clique])

    letters = {group: '' for group in groups}
    for index, clique in enumerate(cliques):
        for group in clique:
            letters[group] += _letter(index)

    return pd.Series(letters, name='Letters')


def compare_groups(data_df, value_col, group_col, alpha=0.05, p_adjust='fdr_bh'):
    """
    Kruskal-Wallis test, Dunn's post-hoc tests and compact letter display.

    Parameters:
    -----------
    data_df : pandas.DataFrame
        Long-format table with one measurement per row
    value_col : str
        Column with the measurement
    group_col : str
        Column with the group label
    alpha : float
        Significance threshold for the letter display
    p_adjust : str
        Multiple-comparison adjustment for Dunn's tests

    Returns:
    --------
    dict
        'kruskal' (dict), 'dunn' (DataFrame), 'letters' (Series) and a
        per-group 'summary' DataFrame
    """
    data_df = data_df[[group_col, value_col]].dropna().copy()
    data_df[group_col] = data_df[group_col].astype(str)

    kruskal = kruskal_wallis_test(data_df, value_col, group_col)
    dunn = dunn_posthoc(data_df, value_col, group_col, p_adjust=p_adjust)

    summary = data_df.groupby(group_col)[value_col].agg(['count', 'median', 'mean', 'std'])
    summary = summary.sort_values('median', ascending=False, kind='mergesort')

    letters = compact_letter_display(dunn, alpha=alpha, group_order=list(summary.index))
    summary['Letters'] = letters.reindex(summary.index)
    summary.index.name = group_col

    logger.info(f"Kruskal-Wallis on {value_col} by {group_col}: H={kruskal['statistic']:.4f}, "
                f"p={kruskal['p-value']:.4g}")
    return {'kruskal': kruskal, 'dunn': dunn, 'letters': letters, 'summary': summary}
