import unittest
import warnings

import numpy as np
import pandas as pd
import scipy.spatial.distance as ssd
from skbio.stats.distance import DistanceMatrix

from edna_tools import ConvergenceWarning, DegenerateInputError, calculate_bray_curtis, run_nmds, run_pcoa
from edna_tools.edna_ordination import kruskal_stress


def euclidean_dm(points):
    ids = [f'S{i}' for i in range(len(points))]
    return DistanceMatrix(ssd.squareform(ssd.pdist(points)), ids=ids)


def two_cluster_abundance(n_per_group=5, seed=0):
    rng = np.random.default_rng(seed)
    a = np.hstack([rng.uniform(5, 10, (n_per_group, 3)), rng.uniform(0, 1, (n_per_group, 3))])
    b = np.hstack([rng.uniform(0, 1, (n_per_group, 3)), rng.uniform(5, 10, (n_per_group, 3))])
    index = [f'CFA{i}' for i in range(n_per_group)] + [f'CFC{i}' for i in range(n_per_group)]
    return pd.DataFrame(np.vstack([a, b]), index=index)


class TestKruskalStress(unittest.TestCase):

    def test_perfect_embedding_has_zero_stress(self):
        points = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 2.0], [3.0, 1.0], [2.0, 2.5]])
        dissimilarities = ssd.squareform(ssd.pdist(points))
        self.assertAlmostEqual(kruskal_stress(dissimilarities, points), 0.0, places=10)

    def test_stress_in_unit_interval(self):
        rng = np.random.default_rng(3)
        dissimilarities = ssd.squareform(ssd.pdist(rng.random((8, 5))))
        stress = kruskal_stress(dissimilarities, rng.random((8, 2)))
        self.assertGreaterEqual(stress, 0.0)
        self.assertLessEqual(stress, 1.0)


class TestNMDS(unittest.TestCase):

    def setUp(self):
        self.dm = calculate_bray_curtis(two_cluster_abundance())

    def run_quietly(self, **kwargs):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            return run_nmds(self.dm, trymax=3, max_iter=100, **kwargs)

    def test_result_structure(self):
        result = self.run_quietly()
        self.assertEqual(result['method'], 'NMDS')
        self.assertEqual(result['coordinates'].shape, (10, 2))
        self.assertEqual(list(result['coordinates'].columns), ['NMDS1', 'NMDS2'])
        self.assertEqual(list(result['coordinates'].index), list(self.dm.ids))
        self.assertEqual(len(result['all_stress']), 3)
        self.assertTrue(1 <= result['best_try'] <= 3)
        self.assertEqual(result['stress'], min(result['all_stress']))
        self.assertEqual(result['converged'], result['stress'] <= result['stress_threshold'])

    def test_reproducible_with_seed(self):
        first = self.run_quietly(random_state=7)
        second = self.run_quietly(random_state=7)
        self.assertEqual(first['stress'], second['stress'])
        np.testing.assert_allclose(first['coordinates'].to_numpy(), second['coordinates'].to_numpy())

    def test_threads_match_serial(self):
        serial = self.run_quietly(random_state=11, n_jobs=1)
        threaded = self.run_quietly(random_state=11, n_jobs=3)
        self.assertEqual(serial['all_stress'], threaded['all_stress'])

    def test_too_few_samples(self):
        dm = DistanceMatrix([[0.0, 0.5], [0.5, 0.0]], ids=['S1', 'S2'])
        with self.assertRaises(DegenerateInputError):
            run_nmds(dm)

    def test_high_stress_warns(self):
        rng = np.random.default_rng(21)
        dm = calculate_bray_curtis(pd.DataFrame(rng.random((10, 6)), index=[f'S{i}' for i in range(10)]))
        with self.assertWarns(ConvergenceWarning):
            result = run_nmds(dm, trymax=2, max_iter=50, stress_threshold=1e-6)
        self.assertIs(result['converged'], False)
        self.assertGreater(result['stress'], result['stress_threshold'])

    def test_no_deprecated_mds_arguments(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            run_nmds(self.dm, trymax=2, max_iter=50, stress_threshold=1.0)
        self.assertEqual([w for w in caught if issubclass(w.category, FutureWarning)], [])


class TestPCoA(unittest.TestCase):

    def test_recovers_euclidean_configuration(self):
        points = np.array([[0.0, 0.0], [4.0, 0.0], [0.0, 3.0], [4.0, 3.0], [2.0, 1.0]])
        dm = euclidean_dm(points)
        result = run_pcoa(dm)
        recovered = ssd.pdist(result['coordinates'].to_numpy())
        np.testing.assert_allclose(recovered, ssd.pdist(points), atol=1e-8)
        self.assertEqual(result['negative_eigenvalues'].size, 0)
        self.assertAlmostEqual(result['proportion_explained'].sum(), 1.0)

    def test_proportions_ordered(self):
        rng = np.random.default_rng(5)
        dm = calculate_bray_curtis(pd.DataFrame(rng.random((10, 6)), index=[f'S{i}' for i in range(10)]))
        result = run_pcoa(dm)
        explained = result['proportion_explained']
        self.assertEqual(len(explained), 2)
        self.assertGreaterEqual(explained[0], explained[1])
        self.assertTrue(((explained >= 0) & (explained <= 1)).all())
        self.assertEqual(list(result['coordinates'].columns), ['PC1', 'PC2'])

    def test_two_samples(self):
        dm = DistanceMatrix([[0.0, 1.0], [1.0, 0.0]], ids=['S1', 'S2'])
        result = run_pcoa(dm)
        coords = result['coordinates']
        self.assertAlmostEqual(abs(coords.loc['S1', 'PC1'] - coords.loc['S2', 'PC1']), 1.0)
        self.assertTrue((coords['PC2'] == 0).all())

    def test_bray_curtis_reports_negative_eigenvalues(self):
        rng = np.random.default_rng(0)
        dm = calculate_bray_curtis(pd.DataFrame(rng.random((8, 5)), index=[f'S{i}' for i in range(8)]))
        result = run_pcoa(dm)
        self.assertGreater(result['negative_eigenvalues'].size, 0)
        self.assertTrue((result['negative_eigenvalues'] < 0).all())
        self.assertTrue(np.isfinite(result['coordinates'].to_numpy()).all())

    def test_non_euclidean_star(self):
        # three leaves 2 apart cannot all lie 1 from a common centre in Euclidean space
        data = [[0.0, 1.0, 1.0, 1.0],
                [1.0, 0.0, 2.0, 2.0],
                [1.0, 2.0, 0.0, 2.0],
                [1.0, 2.0, 2.0, 0.0]]
        result = run_pcoa(DistanceMatrix(data, ids=['C', 'L1', 'L2', 'L3']))
        self.assertGreater(result['negative_eigenvalues'].size, 0)
        self.assertTrue(np.isfinite(result['coordinates'].to_numpy()).all())


if __name__ == '__main__':
    unittest.main()
