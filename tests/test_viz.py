import os
import tempfile
import unittest
import warnings

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from edna_tools import (
    calculate_alpha_diversity,
    calculate_bray_curtis,
    compare_groups,
    perform_permanova,
    run_nmds,
    run_pcoa,
)
from edna_tools.edna_viz import (
    confidence_ellipse,
    plot_alpha_diversity_boxplot,
    plot_group_comparison,
    plot_ordination,
    plot_top_species,
    plot_volcano,
    save_figure,
)


def make_abundance(seed=0):
    rng = np.random.default_rng(seed)
    index = [f'CFA{i}' for i in range(5)] + [f'CFC{i}' for i in range(5)]
    abundance_df = pd.DataFrame(rng.random((10, 6)), index=index,
                                columns=[f'Species {i}' for i in range(6)])
    metadata_df = pd.DataFrame({'Group': ['CFA'] * 5 + ['CFC'] * 5}, index=index)
    return abundance_df, metadata_df


class TestPlots(unittest.TestCase):

    def setUp(self):
        self.abundance_df, self.metadata_df = make_abundance()
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        plt.close('all')
        self.tmpdir.cleanup()

    def test_alpha_boxplots(self):
        alpha = calculate_alpha_diversity(self.abundance_df)
        figures = plot_alpha_diversity_boxplot(alpha, self.metadata_df, 'Group')
        self.assertEqual(set(figures), {'Richness', 'Shannon', 'Simpson'})
        with self.assertRaises(ValueError):
            plot_alpha_diversity_boxplot(alpha, self.metadata_df, 'Group', metric='Chao1')

    def test_ordination_plots_saved(self):
        dm = calculate_bray_curtis(self.abundance_df)
        permanova = perform_permanova(dm, self.metadata_df, permutations=49)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            nmds = run_nmds(dm, trymax=2, max_iter=50)
        for ordination in (nmds, run_pcoa(dm)):
            fig = plot_ordination(ordination, self.metadata_df, 'Group', permanova=permanova)
            output = save_figure(fig, os.path.join(self.tmpdir.name, 'figures', f"{ordination['method']}.png"), dpi=50)
            self.assertTrue(os.path.exists(output))

    def test_confidence_ellipse(self):
        fig, ax = plt.subplots()
        rng = np.random.default_rng(1)
        ellipse = confidence_ellipse(rng.normal(size=20), rng.normal(size=20), ax)
        self.assertIsNotNone(ellipse)
        self.assertIsNone(confidence_ellipse([0.0, 1.0], [0.0, 1.0], ax))

    def test_differential_plots(self):
        results = pd.DataFrame({
            'Species': ['a', 'b', 'c', 'd'],
            'log2FoldChange': [3.0, -2.5, 0.1, np.nan],
            'pvalue': [1e-5, 1e-4, 0.8, np.nan],
            'padj': [4e-5, 2e-4, 0.8, np.nan],
            'baseMean': [10.0, 20.0, 30.0, 1.0],
            'lfcSE': [0.5, 0.5, 0.5, np.nan],
            'stat': [6.0, -5.0, 0.2, np.nan],
        })
        volcano = plot_volcano(results)
        self.assertEqual(len(volcano.axes[0].texts), 2)
        top = plot_top_species(results, top_n=2)
        self.assertEqual(len(top.axes[0].patches), 2)

    def test_group_comparison_plot(self):
        cover_df = pd.DataFrame({
            'Class': ['Sand'] * 6 + ['Reef'] * 6,
            'Cover': [1, 2, 3, 2, 1, 3, 30, 35, 32, 31, 36, 33],
        })
        comparison = compare_groups(cover_df, 'Cover', 'Class')
        fig = plot_group_comparison(cover_df, 'Cover', 'Class', comparison)
        texts = [text.get_text() for text in fig.axes[0].texts]
        self.assertIn('a', texts)
        self.assertTrue(any(text.startswith('Kruskal-Wallis') for text in texts))


if __name__ == '__main__':
    unittest.main()
