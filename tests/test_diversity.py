import unittest

import numpy as np
import pandas as pd

from edna_tools import calculate_alpha_diversity, calculate_bray_curtis, compare_alpha_diversity
from edna_tools.edna_diversity import distance_matrix_to_frame


class TestAlphaDiversity(unittest.TestCase):

    def setUp(self):
        self.abundance_df = pd.DataFrame(
            [[1.0, 1.0, 0.0],
             [5.0, 0.0, 0.0],
             [0.0, 0.0, 0.0],
             [2.0, 3.0, 5.0]],
            index=['S1', 'S2', 'S3', 'S4'],
            columns=['sp1', 'sp2', 'sp3']
        )

    def test_known_values(self):
        alpha = calculate_alpha_diversity(self.abundance_df)
        self.assertEqual(alpha.loc['S1', 'Richness'], 2)
        self.assertAlmostEqual(alpha.loc['S1', 'Shannon'], np.log(2))
        self.assertAlmostEqual(alpha.loc['S1', 'Simpson'], 0.5)

    def test_single_species_sample(self):
        alpha = calculate_alpha_diversity(self.abundance_df)
        self.assertEqual(alpha.loc['S2', 'Richness'], 1)
        self.assertEqual(alpha.loc['S2', 'Shannon'], 0.0)
        self.assertAlmostEqual(alpha.loc['S2', 'Simpson'], 0.0)

    def test_empty_sample_is_zero(self):
        alpha = calculate_alpha_diversity(self.abundance_df)
        self.assertEqual(alpha.loc['S3'].tolist(), [0, 0.0, 0.0])

    def test_ranges(self):
        rng = np.random.default_rng(0)
        abundance_df = pd.DataFrame(rng.random((20, 15)) * (rng.random((20, 15)) > 0.4))
        alpha = calculate_alpha_diversity(abundance_df)
        self.assertTrue((alpha['Shannon'] >= 0).all())
        self.assertTrue((alpha['Simpson'] >= 0).all())
        self.assertTrue((alpha['Simpson'] < 1).all())
        self.assertTrue((alpha['Shannon'] <= np.log(15) + 1e-12).all())

    def test_scale_invariant(self):
        alpha = calculate_alpha_diversity(self.abundance_df)
        scaled = calculate_alpha_diversity(self.abundance_df * 100)
        pd.testing.assert_frame_equal(alpha, scaled)

    def test_negative_raises(self):
        with self.assertRaises(ValueError):
            calculate_alpha_diversity(-self.abundance_df)


class TestCompareAlphaDiversity(unittest.TestCase):

    def test_two_groups_use_mann_whitney(self):
        alpha = pd.DataFrame({'Shannon': [1.0, 1.1, 1.2, 2.0, 2.1, 2.2]},
                             index=['A1', 'A2', 'A3', 'B1', 'B2', 'B3'])
        metadata = pd.DataFrame({'Group': ['A', 'A', 'A', 'B', 'B', 'B']}, index=alpha.index)
        results = compare_alpha_diversity(alpha, metadata, 'Group')
        self.assertEqual(results.loc[0, 'Test'], 'Mann-Whitney U')
        self.assertAlmostEqual(results.loc[0, 'Median in A'], 1.1)
        self.assertGreaterEqual(results.loc[0, 'Adjusted P-value'], results.loc[0, 'P-value'])

    def test_single_group_raises(self):
        alpha = pd.DataFrame({'Shannon': [1.0, 2.0]}, index=['A1', 'A2'])
        metadata = pd.DataFrame({'Group': ['A', 'A']}, index=alpha.index)
        with self.assertRaises(ValueError):
            compare_alpha_diversity(alpha, metadata, 'Group')


class TestBrayCurtis(unittest.TestCase):

    def test_disjoint_samples(self):
        abundance_df = pd.DataFrame([[1.0, 0.0], [0.0, 1.0]], index=['S1', 'S2'])
        dm = calculate_bray_curtis(abundance_df)
        self.assertAlmostEqual(dm['S1', 'S2'], 1.0)

    def test_identical_samples(self):
        abundance_df = pd.DataFrame([[3.0, 1.0], [3.0, 1.0]], index=['S1', 'S2'])
        dm = calculate_bray_curtis(abundance_df)
        self.assertAlmostEqual(dm['S1', 'S2'], 0.0)

    def test_known_value(self):
        # 1 - 2 * (1 + 0) / (2 + 0 + 1 + 3) = 2/3
        abundance_df = pd.DataFrame([[2.0, 0.0], [1.0, 3.0]], index=['S1', 'S2'])
        dm = calculate_bray_curtis(abundance_df)
        self.assertAlmostEqual(dm['S1', 'S2'], 2 / 3)

    def test_empty_samples_are_zero_distance(self):
        abundance_df = pd.DataFrame([[0.0, 0.0], [0.0, 0.0], [1.0, 0.0]], index=['S1', 'S2', 'S3'])
        dm = calculate_bray_curtis(abundance_df)
        self.assertEqual(dm['S1', 'S2'], 0.0)
        self.assertEqual(dm['S1', 'S3'], 1.0)

    def test_matrix_properties(self):
        rng = np.random.default_rng(1)
        abundance_df = pd.DataFrame(rng.random((12, 8)) * (rng.random((12, 8)) > 0.3),
                                    index=[f'S{i}' for i in range(12)])
        frame = distance_matrix_to_frame(calculate_bray_curtis(abundance_df))
        values = frame.to_numpy()
        np.testing.assert_allclose(values, values.T)
        np.testing.assert_array_equal(np.diag(values), 0.0)
        self.assertTrue(((values >= 0) & (values <= 1)).all())
        self.assertEqual(list(frame.index), list(abundance_df.index))


if __name__ == '__main__':
    unittest.main()
