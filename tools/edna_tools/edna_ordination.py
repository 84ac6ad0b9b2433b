"""
Ordination of dissimilarity matrices: NMDS and PCoA.
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import scipy.spatial.distance as ssd
from scipy.linalg import eigh
from sklearn.isotonic import IsotonicRegression
from sklearn.manifold import MDS

from .exceptions import ConvergenceWarning, DegenerateInputError

logger = logging.getLogger(__name__)


def kruskal_stress(dissimilarities, coordinates):
    """
    Kruskal's stress-1 of an embedding against a dissimilarity matrix.

    The embedding distances are compared with their isotonic (monotone)
    regression on the original dissimilarities.

    Parameters:
    -----------
    dissimilarities : numpy.ndarray
        Square dissimilarity matrix
    coordinates : numpy.ndarray
        Sample coordinates, one row per sample

    Returns:
    --------
    float
        Stress in [0, 1]
    """
    observed = ssd.squareform(np.asarray(dissimilarities, dtype=float), checks=False)
    embedded = ssd.pdist(np.asarray(coordinates, dtype=float))

    total = (embedded ** 2).sum()
    if total == 0:
        # Collapsed embedding only fits data with no structure
        return 0.0 if not observed.any() else 1.0

    fitted = IsotonicRegression(increasing=True).fit_transform(observed, embedded)
    return float(np.sqrt(((embedded - fitted) ** 2).sum() / total))


def _nmds_try(dissimilarities, n_components, max_iter, seed):
    """Run a single non-metric SMACOF fit from a random start."""
    mds = MDS(n_components=n_components, metric='precomputed', metric_mds=False, n_init=1,
              init='random', max_iter=max_iter, random_state=seed)
    coordinates = mds.fit_transform(dissimilarities)
    return coordinates, kruskal_stress(dissimilarities, coordinates)


def run_nmds(distance_matrix, n_components=2, trymax=20, max_iter=300,
             stress_threshold=0.2, random_state=42, n_jobs=1):
    """
    Non-metric multidimensional scaling with random restarts.

    Each try starts from a different random configuration (seeded
    ``random_state + try``); the lowest-stress solution is kept, ties going
    to the earliest try. A best stress above ``stress_threshold`` is
    reported with a ConvergenceWarning and ``converged=False``.

    Parameters:
    -----------
    distance_matrix : skbio.DistanceMatrix
        Beta diversity distance matrix
    n_components : int
        Number of ordination axes
    trymax : int
        Number of random starts
    max_iter : int
        Maximum SMACOF iterations per start
    stress_threshold : float
        Largest acceptable stress
    random_state : int
        Base seed for the random starts
    n_jobs : int
        Number of worker threads used for the tries

    Returns:
    --------
    dict
        NMDS results: coordinates, stress and convergence diagnostics
    """
    ids = list(distance_matrix.ids)
    if len(ids) < 3:
        raise DegenerateInputError(f"NMDS needs at least 3 samples, got {len(ids)}")
    if trymax < 1:
        raise ValueError("trymax must be at least 1")

    dissimilarities = np.asarray(distance_matrix.data, dtype=float)
    seeds = [random_state + attempt for attempt in range(trymax)]

    def run_try(seed):
        return _nmds_try(dissimilarities, n_components, max_iter, seed)

    if n_jobs and n_jobs > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            tries = list(executor.map(run_try, seeds))
    else:
        tries = [run_try(seed) for seed in seeds]

    stresses = [stress for _, stress in tries]
    best_try = int(np.argmin(stresses))
    best_coordinates, best_stress = tries[best_try]
    converged = bool(best_stress <= stress_threshold)

    logger.info(f"NMDS best stress {best_stress:.4f} on try {best_try + 1}/{trymax}")
    if not converged:
        message = (f"NMDS stress {best_stress:.4f} stayed above {stress_threshold} "
                   f"after {trymax} tries")
        logger.warning(message)
        warnings.warn(message, ConvergenceWarning, stacklevel=2)

    axes = [f'NMDS{axis + 1}' for axis in range(n_components)]
    return {
        'method': 'NMDS',
        'coordinates': pd.DataFrame(best_coordinates, index=ids, columns=axes),
        'stress': best_stress,
        'converged': converged,
        'tries': trymax,
        'best_try': best_try + 1,
        'stress_threshold': stress_threshold,
        'all_stress': stresses,
    }


def run_pcoa(distance_matrix, n_axes=2, tolerance=1e-8):
    """
    Principal coordinates analysis (classical MDS).

    The squared dissimilarities are Gower-centred and eigendecomposed; the
    leading eigenvectors scaled by the square root of their eigenvalues
    are the coordinates. Negative eigenvalues (non-Euclidean input) are
    reported, not raised.

    Parameters:
    -----------
    distance_matrix : skbio.DistanceMatrix
        Beta diversity distance matrix
    n_axes : int
        Number of principal coordinates to keep
    tolerance : float
        Eigenvalues within ``tolerance`` times the largest eigenvalue of
        zero are treated as zero

    Returns:
    --------
    dict
        PCoA results: coordinates, eigenvalues, proportion explained and
        any negative eigenvalues
    """
    ids = list(distance_matrix.ids)
    d = np.asarray(distance_matrix.data, dtype=float)
    n = d.shape[0]

    # Gower centring of -d^2 / 2
    a = -0.5 * d ** 2
    centering = np.eye(n) - np.ones((n, n)) / n
    gower = centering @ a @ centering
    gower = (gower + gower.T) / 2

    eigvals, eigvecs = eigh(gower)
    order = np.argsort(eigvals)[::-1]
    eigvals = eigvals[order]
    eigvecs = eigvecs[:, order]

    scale = np.abs(eigvals).max() if n > 0 and np.abs(eigvals).max() > 0 else 1.0
    eigvals[np.abs(eigvals) < tolerance * scale] = 0.0

    negative = eigvals[eigvals < 0]
    if negative.size:
        logger.warning(f"PCoA found {negative.size} negative eigenvalues (min {negative.min():.4g}); "
                       f"dissimilarity is not Euclidean")

    coordinates = np.zeros((n, n_axes))
    for axis in range(min(n_axes, n)):
        value = eigvals[axis]
        if value <= 0:
            continue
        vector = eigvecs[:, axis]
        # Deterministic sign: largest loading positive
        if vector[np.argmax(np.abs(vector))] < 0:
            vector = -vector
        coordinates[:, axis] = vector * np.sqrt(value)

    positive_total = eigvals[eigvals > 0].sum()
    proportion = np.zeros(max(n, n_axes))
    if positive_total > 0:
        proportion[:n] = np.where(eigvals > 0, eigvals, 0.0) / positive_total

    axes = [f'PC{axis + 1}' for axis in range(n_axes)]
    return {
        'method': 'PCoA',
        'coordinates': pd.DataFrame(coordinates, index=ids, columns=axes),
        'eigenvalues': eigvals,
        'proportion_explained': proportion[:n_axes],
        'negative_eigenvalues': negative,
    }
