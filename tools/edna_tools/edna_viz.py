"""
Visualization functions for eDNA diversity and differential abundance results.
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.patches import Ellipse
from scipy.stats import chi2

from .edna_differential import top_species_by_effect

logger = logging.getLogger(__name__)


def save_figure(fig, output_file, dpi=300):
    """Save a figure, creating the parent directory, and close it."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_file, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    logger.debug(f"Saved figure to {output_file}")
    return output_file


def plot_alpha_diversity_boxplot(alpha_df, metadata_df, group_var, metric=None):
    """
    Create a boxplot of alpha diversity by group.

    Parameters:
    -----------
    alpha_df : pandas.DataFrame
        Alpha diversity DataFrame with samples as index
    metadata_df : pandas.DataFrame
        Metadata DataFrame with samples as index
    group_var : str
        Grouping variable from metadata
    metric : str, optional
        Alpha diversity metric to plot (if None, plots all metrics)

    Returns:
    --------
    matplotlib.figure.Figure or dict
        Boxplot figure(s)
    """
    # Get common samples
    common_samples = [s for s in alpha_df.index if s in metadata_df.index]

    # Filter to common samples
    alpha_subset = alpha_df.loc[common_samples]
    metadata_subset = metadata_df.loc[common_samples]

    if metric is None:
        return {m: _create_diversity_boxplot(alpha_subset, metadata_subset, group_var, m)
                for m in alpha_df.columns}

    if metric not in alpha_df.columns:
        raise ValueError(f"Metric '{metric}' not found in alpha diversity data")

    return _create_diversity_boxplot(alpha_subset, metadata_subset, group_var, metric)


def _create_diversity_boxplot(alpha_df, metadata_df, group_var, metric):
    """Helper function to create a diversity boxplot."""
    fig, ax = plt.subplots(figsize=(8, 6))

    plot_data = pd.DataFrame({
        metric: alpha_df[metric],
        group_var: metadata_df[group_var].astype(str)
    })
    order = sorted(plot_data[group_var].unique())

    sns.boxplot(x=group_var, y=metric, data=plot_data, order=order, ax=ax)

    # Add individual points
    sns.stripplot(x=group_var, y=metric, data=plot_data, order=order,
                  color='black', size=4, alpha=0.5, ax=ax)

    ax.set_title(f'{metric} by {group_var}')
    ax.set_xlabel(group_var)
    ax.set_ylabel(metric)

    fig.tight_layout()
    return fig


def confidence_ellipse(x, y, ax, confidence=0.95, **kwargs):
    """
    Draw the covariance ellipse of a 2-D point cloud.

    The ellipse covers ``confidence`` of a bivariate normal fitted to the
    points. Fewer than three points draw nothing.

    Returns:
    --------
    matplotlib.patches.Ellipse or None
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.size < 3:
        return None

    covariance = np.cov(x, y)
    eigvals, eigvecs = np.linalg.eigh(covariance)
    eigvals = np.clip(eigvals, 0, None)
    if not np.isfinite(eigvals).all() or eigvals.max() == 0:
        return None

    scale = chi2.ppf(confidence, df=2)
    width, height = 2 * np.sqrt(scale * eigvals[::-1])
    angle = np.degrees(np.arctan2(eigvecs[1, -1], eigvecs[0, -1]))

    ellipse = Ellipse(xy=(x.mean(), y.mean()), width=width, height=height, angle=angle, **kwargs)
    ax.add_patch(ellipse)
    return ellipse


def plot_ordination(ordination, metadata_df, variable, permanova=None, ellipses=True):
    """
    Create an NMDS or PCoA scatter plot coloured by group.

    Parameters:
    -----------
    ordination : dict
        Result of run_nmds or run_pcoa
    metadata_df : pandas.DataFrame
        Metadata DataFrame with samples as index
    variable : str
        Metadata variable for colouring points
    permanova : dict, optional
        Result of perform_permanova, annotated on the plot
    ellipses : bool
        Draw 95% confidence ellipses per group

    Returns:
    --------
    matplotlib.figure.Figure
        Ordination plot figure
    """
    coordinates = ordination['coordinates']
    x_axis, y_axis = coordinates.columns[:2]

    plot_df = coordinates.copy()
    plot_df[variable] = metadata_df.reindex(plot_df.index)[variable].astype(str)
    groups = sorted(plot_df[variable].unique())
    palette = dict(zip(groups, sns.color_palette(n_colors=len(groups))))

    fig, ax = plt.subplots(figsize=(9, 7))
    sns.scatterplot(data=plot_df, x=x_axis, y=y_axis, hue=variable, hue_order=groups,
                    palette=palette, s=90, ax=ax)

    if ellipses:
        for group in groups:
            subset = plot_df[plot_df[variable] == group]
            confidence_ellipse(subset[x_axis], subset[y_axis], ax, confidence=0.95,
                               facecolor=palette[group], edgecolor=palette[group],
                               alpha=0.2, linestyle='--')

    if ordination['method'] == 'PCoA':
        explained = ordination['proportion_explained']
        ax.set_xlabel(f'{x_axis} ({explained[0] * 100:.1f}% variance explained)')
        ax.set_ylabel(f'{y_axis} ({explained[1] * 100:.1f}% variance explained)')
    else:
        ax.set_xlabel(x_axis)
        ax.set_ylabel(y_axis)

    annotations = []
    if ordination['method'] == 'NMDS':
        annotations.append(f"Stress: {ordination['stress']:.3f}")
    if permanova is not None and np.isfinite(permanova.get('p-value', np.nan)):
        annotations.append(f"PERMANOVA p = {permanova['p-value']:.3f}")
    if annotations:
        ax.text(0.02, 0.98, '\n'.join(annotations), transform=ax.transAxes, va='top', ha='left',
                bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    ax.set_title(f"{ordination['method']} of Bray-Curtis dissimilarity ({variable})")
    ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left', title=variable)

    # Autoscale after adding patches
    ax.autoscale_view()
    fig.tight_layout()
    return fig


def plot_volcano(results_df, padj_threshold=0.05, lfc_threshold=1.0, label_padj_threshold=0.01):
    """
    Volcano plot of log2 fold change against -log10 adjusted p-value.

    Species with padj < ``label_padj_threshold`` and |log2FC| >
    ``lfc_threshold`` are labelled.

    Parameters:
    -----------
    results_df : pandas.DataFrame
        Differential abundance results
    padj_threshold : float
        Significance line for adjusted p-values
    lfc_threshold : float
        Fold change lines at +/- this log2 value
    label_padj_threshold : float
        Adjusted p-value below which significant species are labelled

    Returns:
    --------
    matplotlib.figure.Figure
        Volcano plot figure
    """
    plot_df = results_df.dropna(subset=['log2FoldChange', 'padj']).copy()
    # Keep padj == 0 on the plot
    floor = np.nextafter(0, 1)
    plot_df['neg_log10_padj'] = -np.log10(plot_df['padj'].clip(lower=floor))

    significant = (plot_df['padj'] < padj_threshold) & (plot_df['log2FoldChange'].abs() > lfc_threshold)
    plot_df['Significance'] = np.where(
        significant,
        np.where(plot_df['log2FoldChange'] > 0, 'Up', 'Down'),
        'Not significant'
    )

    fig, ax = plt.subplots(figsize=(9, 7))
    sns.scatterplot(data=plot_df, x='log2FoldChange', y='neg_log10_padj', hue='Significance',
                    hue_order=['Down', 'Not significant', 'Up'],
                    palette={'Down': 'tab:blue', 'Not significant': 'lightgrey', 'Up': 'tab:red'},
                    s=40, edgecolor=None, ax=ax)

    ax.axhline(-np.log10(padj_threshold), color='black', linestyle='--', linewidth=0.8)
    ax.axvline(lfc_threshold, color='black', linestyle='--', linewidth=0.8)
    ax.axvline(-lfc_threshold, color='black', linestyle='--', linewidth=0.8)

    labelled = plot_df[(plot_df['padj'] < label_padj_threshold)
                       & (plot_df['log2FoldChange'].abs() > lfc_threshold)]
    for _, row in labelled.iterrows():
        ax.annotate(row['Species'], (row['log2FoldChange'], row['neg_log10_padj']),
                    xytext=(3, 3), textcoords='offset points', fontsize=7)

    ax.set_xlabel('log2 fold change')
    ax.set_ylabel('-log10 adjusted p-value')
    ax.set_title('Differential abundance')

    fig.tight_layout()
    return fig


def plot_top_species(results_df, top_n=20):
    """Horizontal bar chart of the species with the largest absolute log2 fold change."""
    top = top_species_by_effect(results_df, top_n=top_n).iloc[::-1]

    fig, ax = plt.subplots(figsize=(9, max(4, 0.35 * len(top) + 1)))
    colors = np.where(top['log2FoldChange'] > 0, 'tab:red', 'tab:blue')
    ax.barh(top['Species'], top['log2FoldChange'], color=colors)
    ax.axvline(0, color='black', linewidth=0.8)

    ax.set_xlabel('log2 fold change')
    ax.set_ylabel('')
    ax.set_title(f'Top {len(top)} species by absolute log2 fold change')

    fig.tight_layout()
    return fig


def plot_group_comparison(data_df, value_col, group_col, comparison):
    """
    Boxplot of a measurement by group with compact letter display.

    Parameters:
    -----------
    data_df : pandas.DataFrame
        Long-format table with one measurement per row
    value_col : str
        Column with the measurement
    group_col : str
        Column with the group label
    comparison : dict
        Result of compare_groups

    Returns:
    --------
    matplotlib.figure.Figure
        Boxplot figure
    """
    plot_df = data_df[[group_col, value_col]].dropna().copy()
    plot_df[group_col] = plot_df[group_col].astype(str)
    summary = comparison['summary']
    order = list(summary.index)

    fig, ax = plt.subplots(figsize=(max(6, 0.8 * len(order) + 2), 6))
    sns.boxplot(x=group_col, y=value_col, data=plot_df, order=order, ax=ax)
    sns.stripplot(x=group_col, y=value_col, data=plot_df, order=order,
                  color='black', size=3, alpha=0.5, ax=ax)

    # Letters above each box
    top = plot_df[value_col].max()
    span = top - plot_df[value_col].min()
    offset = 0.05 * span if span > 0 else 0.5
    group_max = plot_df.groupby(group_col)[value_col].max()
    for position, group in enumerate(order):
        ax.text(position, group_max[group] + offset, summary.loc[group, 'Letters'],
                ha='center', va='bottom', fontsize=11, fontweight='bold')
    ax.set_ylim(top=top + 3 * offset)

    kruskal = comparison['kruskal']
    if np.isfinite(kruskal['p-value']):
        ax.text(0.02, 0.98, f"Kruskal-Wallis p = {kruskal['p-value']:.3g}", transform=ax.transAxes,
                va='top', ha='left', bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    ax.set_title(f'{value_col} by {group_col}')
    ax.set_xlabel(group_col)
    ax.set_ylabel(value_col)
    if max(len(group) for group in order) > 8:
        plt.setp(ax.get_xticklabels(), rotation=45, ha='right')

    fig.tight_layout()
    return fig
