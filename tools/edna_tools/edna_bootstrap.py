"""
Bootstrap confidence intervals for classification metrics from a confusion matrix.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
from sklearn.metrics import accuracy_score, f1_score, matthews_corrcoef

from .exceptions import DegenerateInputError

logger = logging.getLogger(__name__)

METRICS = ['accuracy', 'macro_f1', 'weighted_f1', 'mcc']


def validate_confusion_matrix(confusion_df):
    """Check that a confusion matrix is square over one label set with non-negative integer counts."""
    if confusion_df.shape[0] != confusion_df.shape[1]:
        raise ValueError(f"Confusion matrix must be square, got {confusion_df.shape[0]}x{confusion_df.shape[1]}")
    if set(map(str, confusion_df.index)) != set(map(str, confusion_df.columns)):
        raise ValueError("Confusion matrix rows and columns must use the same class labels")

    values = confusion_df.to_numpy(dtype=float)
    if not np.isfinite(values).all() or (values < 0).any() or (values != np.round(values)).any():
        raise ValueError("Confusion matrix counts must be non-negative integers")
    if values.sum() == 0:
        raise DegenerateInputError("Confusion matrix is empty")


def confusion_to_labels(confusion_df):
    """
    Expand a confusion matrix into per-sample (true, predicted) labels.

    Each cell's label pair is repeated by its count, row by row.

    Parameters:
    -----------
    confusion_df : pandas.DataFrame
        Counts with true labels as index and predicted labels as columns

    Returns:
    --------
    tuple of numpy.ndarray
        (true labels, predicted labels)
    """
    validate_confusion_matrix(confusion_df)
    counts = confusion_df.to_numpy(dtype=float).astype(np.int64).ravel()
    true_labels = np.repeat(np.asarray(confusion_df.index, dtype=str), confusion_df.shape[1])
    predicted_labels = np.tile(np.asarray(confusion_df.columns, dtype=str), confusion_df.shape[0])
    return np.repeat(true_labels, counts), np.repeat(predicted_labels, counts)


def classification_metrics(y_true, y_pred):
    """
    Accuracy, macro-F1, weighted-F1 and Matthews correlation.

    F1 scores are computed one-vs-rest over the labels present in either
    vector. MCC is 1 when every prediction is correct, including draws
    that contain a single class.

    Parameters:
    -----------
    y_true : array-like
        True labels
    y_pred : array-like
        Predicted labels

    Returns:
    --------
    dict
        Metric name -> value
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    accuracy = accuracy_score(y_true, y_pred)

    if accuracy == 1.0:
        mcc = 1.0
    else:
        mcc = matthews_corrcoef(y_true, y_pred)

    return {
        'accuracy': accuracy,
        'macro_f1': f1_score(y_true, y_pred, average='macro', zero_division=0),
        'weighted_f1': f1_score(y_true, y_pred, average='weighted', zero_division=0),
        'mcc': mcc,
    }


def bootstrap_metrics(confusion_df, n_bootstrap=2000, confidence=0.95, seed=42, n_jobs=1,
                      return_replicates=False):
    """
    Percentile bootstrap confidence intervals for classification metrics.

    The confusion matrix is expanded into label pairs, which are resampled
    with replacement ``n_bootstrap`` times. All resample indices come from
    one seeded generator before any scoring, so the result does not depend
    on ``n_jobs``.

    Parameters:
    -----------
    confusion_df : pandas.DataFrame
        Counts with true labels as index and predicted labels as columns
    n_bootstrap : int
        Number of bootstrap replicates
    confidence : float
        Confidence level of the interval
    seed : int
        Seed for the resampling generator
    n_jobs : int
        Number of worker threads used to score replicates
    return_replicates : bool
        Also return the per-replicate metric table

    Returns:
    --------
    pandas.DataFrame or tuple
        Summary indexed by metric with estimate, ci_lower and ci_upper;
        with ``return_replicates`` a (summary, replicates) tuple
    """
    if n_bootstrap < 1:
        raise ValueError("n_bootstrap must be at least 1")
    if not 0 < confidence < 1:
        raise ValueError("confidence must be between 0 and 1")

    y_true, y_pred = confusion_to_labels(confusion_df)
    n_samples = len(y_true)
    estimate = classification_metrics(y_true, y_pred)

    rng = np.random.default_rng(seed)
    draws = rng.integers(0, n_samples, size=(n_bootstrap, n_samples))

    def score(indices):
        return classification_metrics(y_true[indices], y_pred[indices])

    if n_jobs and n_jobs > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            scores = list(executor.map(score, draws))
    else:
        scores = [score(indices) for indices in draws]

    replicates = pd.DataFrame(scores, columns=METRICS)

    tail = (1 - confidence) / 2 * 100
    summary = pd.DataFrame({
        'estimate': [estimate[m] for m in METRICS],
        'ci_lower': [np.percentile(replicates[m], tail) for m in METRICS],
        'ci_upper': [np.percentile(replicates[m], 100 - tail) for m in METRICS],
    }, index=pd.Index(METRICS, name='metric'))

    logger.info(f"Bootstrapped {n_bootstrap} replicates of {n_samples} labelled samples")
    if return_replicates:
        return summary, replicates
    return summary
