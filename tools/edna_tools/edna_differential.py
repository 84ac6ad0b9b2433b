"""
Differential abundance testing with per-species negative binomial models.
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from statsmodels.stats.multitest import multipletests
from statsmodels.tools.sm_exceptions import ConvergenceWarning as StatsmodelsConvergenceWarning
from statsmodels.tools.sm_exceptions import HessianInversionWarning

from .exceptions import ModelFitWarning

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['Species', 'log2FoldChange', 'pvalue', 'padj', 'baseMean', 'lfcSE', 'stat']
DISPERSION_TOLERANCE = 1e-6


def to_pseudo_counts(abundance_df, scale=1e6):
    """
    Convert abundances to integer pseudo-counts.

    count = round(abundance * scale) + 1, so no count is zero.

    Parameters:
    -----------
    abundance_df : pandas.DataFrame
        Abundance matrix with samples as rows, species as columns
    scale : float
        Multiplier applied before rounding

    Returns:
    --------
    pandas.DataFrame
        int64 pseudo-count matrix
    """
    values = abundance_df.to_numpy(dtype=float)
    if (values < 0).any():
        raise ValueError("Pseudo-counts require non-negative abundances")
    counts = np.round(values * scale).astype(np.int64) + 1
    return pd.DataFrame(counts, index=abundance_df.index, columns=abundance_df.columns)


def estimate_size_factors(counts_df):
    """
    Median-of-ratios size factors.

    Each sample's factor is the median, over species, of its count divided
    by the species' geometric mean count across samples.

    Parameters:
    -----------
    counts_df : pandas.DataFrame
        Positive count matrix with samples as rows, species as columns

    Returns:
    --------
    pandas.Series
        Size factor per sample
    """
    log_counts = np.log(counts_df.to_numpy(dtype=float))
    log_geo_means = log_counts.mean(axis=0)
    log_ratios = log_counts - log_geo_means
    size_factors = np.exp(np.median(log_ratios, axis=1))
    return pd.Series(size_factors, index=counts_df.index, name='sizeFactor')


def benjamini_hochberg(pvalues):
    """
    Benjamini-Hochberg adjusted p-values.

    Undefined p-values stay undefined and are not counted as tests.

    Parameters:
    -----------
    pvalues : array-like
        Raw p-values, possibly containing NaN

    Returns:
    --------
    numpy.ndarray
        Adjusted p-values in the input order
    """
    pvalues = np.asarray(pvalues, dtype=float)
    adjusted = np.full(pvalues.shape, np.nan)
    tested = np.isfinite(pvalues)
    if tested.any():
        adjusted[tested] = multipletests(pvalues[tested], method='fdr_bh')[1]
    return adjusted


def _failed_fit(note):
    return {
        'log2FoldChange': np.nan,
        'lfcSE': np.nan,
        'stat': np.nan,
        'pvalue': np.nan,
        'dispersion': np.nan,
        'note': note,
    }


def fit_species_model(counts, treatment, size_factors, maxiter=200):
    """
    Fit a negative binomial GLM for one species.

    The model has an intercept and a treatment indicator, with
    log(size factor) as offset; the NB2 dispersion is estimated by maximum
    likelihood. The treatment coefficient gives the log2 fold change and
    its Wald test.

    Parameters:
    -----------
    counts : array-like
        Pseudo-counts of the species per sample
    treatment : array-like
        1 for samples of the treatment group, 0 for the reference group
    size_factors : array-like
        Per-sample size factors
    maxiter : int
        Maximum optimizer iterations

    Returns:
    --------
    dict
        log2FoldChange, lfcSE, stat, pvalue, dispersion and a note; all
        NaN when the model could not be fitted
    """
    counts = np.asarray(counts, dtype=float)
    treatment = np.asarray(treatment, dtype=float)

    if np.all(counts == counts[0]):
        return _failed_fit('constant counts; dispersion not estimable')

    exog = np.column_stack([np.ones_like(treatment), treatment])
    offset = np.log(np.asarray(size_factors, dtype=float))

    try:
        model = sm.NegativeBinomial(counts, exog, loglike_method='nb2', offset=offset)
        fit = model.fit(disp=0, maxiter=maxiter)
    except (np.linalg.LinAlgError, ValueError, OverflowError) as e:
        return _failed_fit(f'fit failed: {e}')

    if not fit.mle_retvals.get('converged', True):
        return _failed_fit('optimizer did not converge')

    coefficient = fit.params[1]
    standard_error = fit.bse[1]
    dispersion = fit.params[-1]

    if not (np.isfinite(coefficient) and np.isfinite(standard_error) and standard_error > 0
            and np.isfinite(dispersion)):
        return _failed_fit('dispersion or standard error not estimable')
    if dispersion < DISPERSION_TOLERANCE:
        return _failed_fit('dispersion at the Poisson boundary; counts nearly constant')

    wald = coefficient / standard_error
    return {
        'log2FoldChange': coefficient / np.log(2),
        'lfcSE': standard_error / np.log(2),
        'stat': wald,
        'pvalue': 2 * stats.norm.sf(abs(wald)),
        'dispersion': dispersion,
        'note': 'ok',
    }


def differential_abundance_analysis(abundance_df, metadata_df, group_var, reference=None,
                                    treatment=None, scale=1e6, n_jobs=1):
    """
    Identify differentially abundant species between two groups.

    Abundances are turned into pseudo-counts, normalised with
    median-of-ratios size factors and each species gets its own negative
    binomial model. P-values are adjusted with Benjamini-Hochberg across
    the species that could be fitted.

    Parameters:
    -----------
    abundance_df : pandas.DataFrame
        Abundance matrix with samples as rows, species as columns
    metadata_df : pandas.DataFrame
        Metadata DataFrame with samples as index
    group_var : str
        Grouping variable in metadata
    reference : str, optional
        Reference (denominator) group; default is the first group in
        sorted order
    treatment : str, optional
        Treatment (numerator) group; default is the other group
    scale : float
        Pseudo-count multiplier
    n_jobs : int
        Number of worker threads for the per-species fits

    Returns:
    --------
    pandas.DataFrame
        One row per species: Species, log2FoldChange, pvalue, padj,
        baseMean, lfcSE, stat
    """
    common_samples = [s for s in abundance_df.index if s in metadata_df.index]
    groups = metadata_df.loc[common_samples, group_var].astype(str)
    levels = sorted(groups.unique())

    if reference is None and treatment is None:
        if len(levels) != 2:
            raise ValueError(f"'{group_var}' has {len(levels)} groups; give reference and treatment groups")
        reference, treatment = levels
    elif reference is None:
        others = [level for level in levels if level != treatment]
        if len(others) != 1:
            raise ValueError("Reference group is ambiguous; give it explicitly")
        reference = others[0]
    elif treatment is None:
        others = [level for level in levels if level != reference]
        if len(others) != 1:
            raise ValueError("Treatment group is ambiguous; give it explicitly")
        treatment = others[0]

    for level in (reference, treatment):
        if level not in levels:
            raise ValueError(f"Group '{level}' not found in '{group_var}' (found: {', '.join(levels)})")

    keep = groups.isin([reference, treatment])
    samples = groups.index[keep]
    indicator = (groups[keep] == treatment).astype(int).to_numpy()

    counts_df = to_pseudo_counts(abundance_df.loc[samples], scale=scale)
    size_factors = estimate_size_factors(counts_df)
    normalized = counts_df.div(size_factors, axis=0)

    logger.info(f"Fitting negative binomial models for {counts_df.shape[1]} species: "
                f"{treatment} vs {reference} ({indicator.sum()} vs {len(indicator) - indicator.sum()} samples)")

    def fit_one(species):
        return species, fit_species_model(counts_df[species].to_numpy(), indicator, size_factors.to_numpy())

    with warnings.catch_warnings():
        warnings.simplefilter('ignore', StatsmodelsConvergenceWarning)
        warnings.simplefilter('ignore', HessianInversionWarning)
        warnings.simplefilter('ignore', RuntimeWarning)
        if n_jobs and n_jobs > 1:
            with ThreadPoolExecutor(max_workers=n_jobs) as executor:
                fits = dict(executor.map(fit_one, counts_df.columns))
        else:
            fits = dict(fit_one(species) for species in counts_df.columns)

    failed = [species for species, fit in fits.items() if fit['note'] != 'ok']
    for species in failed:
        logger.warning(f"No estimate for species '{species}': {fits[species]['note']}")
    if failed:
        warnings.warn(f"Negative binomial model could not be fitted for {len(failed)} of "
                      f"{len(fits)} species; their results are NA", ModelFitWarning, stacklevel=2)

    results_df = pd.DataFrame({
        'Species': list(counts_df.columns),
        'log2FoldChange': [fits[s]['log2FoldChange'] for s in counts_df.columns],
        'pvalue': [fits[s]['pvalue'] for s in counts_df.columns],
        'baseMean': normalized.mean(axis=0).to_numpy(),
        'lfcSE': [fits[s]['lfcSE'] for s in counts_df.columns],
        'stat': [fits[s]['stat'] for s in counts_df.columns],
    })
    results_df['padj'] = benjamini_hochberg(results_df['pvalue'])

    return results_df[RESULT_COLUMNS]


def top_species_by_effect(results_df, top_n=20):
    """Species with the largest absolute log2 fold change."""
    ranked = results_df.dropna(subset=['log2FoldChange'])
    order = ranked['log2FoldChange'].abs().sort_values(ascending=False, kind='mergesort').index
    return ranked.loc[order].head(top_n)


def write_differential_results(results_df, output_file):
    """Write differential abundance results as CSV without an index column."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    results_df.to_csv(output_file, index=False, na_rep='NA')
    logger.info(f"Wrote differential abundance results for {len(results_df)} species to {output_file}")
    return output_file
