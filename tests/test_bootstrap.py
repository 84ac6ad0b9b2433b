import unittest

import numpy as np
import pandas as pd

from edna_tools import (
    DegenerateInputError,
    bootstrap_metrics,
    classification_metrics,
    confusion_to_labels,
)

LABELS = ['CFA', 'CFC', 'Other']


def confusion(values, labels=LABELS):
    return pd.DataFrame(values, index=labels, columns=labels)


class TestConfusionToLabels(unittest.TestCase):

    def test_expansion_row_major(self):
        y_true, y_pred = confusion_to_labels(confusion([[2, 1, 0], [0, 1, 0], [0, 0, 1]]))
        self.assertEqual(list(y_true), ['CFA', 'CFA', 'CFA', 'CFC', 'Other'])
        self.assertEqual(list(y_pred), ['CFA', 'CFA', 'CFC', 'CFC', 'Other'])

    def test_total_count(self):
        matrix = confusion([[5, 2, 1], [0, 7, 3], [1, 0, 4]])
        y_true, y_pred = confusion_to_labels(matrix)
        self.assertEqual(len(y_true), 23)
        self.assertEqual(len(y_pred), 23)

    def test_invalid_matrices(self):
        with self.assertRaises(ValueError):
            confusion_to_labels(pd.DataFrame([[1, 2]], index=['a'], columns=['a', 'b']))
        with self.assertRaises(ValueError):
            confusion_to_labels(confusion([[1, -1, 0], [0, 1, 0], [0, 0, 1]]))
        with self.assertRaises(ValueError):
            confusion_to_labels(pd.DataFrame([[1, 0], [0, 1]], index=['a', 'b'], columns=['a', 'c']))
        with self.assertRaises(DegenerateInputError):
            confusion_to_labels(confusion(np.zeros((3, 3))))


class TestClassificationMetrics(unittest.TestCase):

    def test_perfect_predictions(self):
        metrics = classification_metrics(['a', 'b', 'b', 'c'], ['a', 'b', 'b', 'c'])
        for name in ['accuracy', 'macro_f1', 'weighted_f1', 'mcc']:
            self.assertEqual(metrics[name], 1.0)

    def test_single_class_perfect(self):
        metrics = classification_metrics(['a', 'a'], ['a', 'a'])
        self.assertEqual(metrics['mcc'], 1.0)
        self.assertEqual(metrics['macro_f1'], 1.0)

    def test_known_accuracy(self):
        metrics = classification_metrics(['a', 'a', 'b', 'b'], ['a', 'b', 'b', 'b'])
        self.assertAlmostEqual(metrics['accuracy'], 0.75)
        self.assertTrue(-1 <= metrics['mcc'] <= 1)


class TestBootstrapMetrics(unittest.TestCase):

    def test_perfect_classifier(self):
        summary = bootstrap_metrics(confusion([[5, 0, 0], [0, 7, 0], [0, 0, 3]]), n_bootstrap=200)
        self.assertEqual(list(summary.index), ['accuracy', 'macro_f1', 'weighted_f1', 'mcc'])
        self.assertTrue((summary == 1.0).all().all())

    def test_interval_contains_plausible_range(self):
        summary = bootstrap_metrics(confusion([[20, 3, 2], [4, 15, 1], [2, 2, 11]]), n_bootstrap=300)
        self.assertTrue((summary['ci_lower'] <= summary['ci_upper']).all())
        self.assertAlmostEqual(summary.loc['accuracy', 'estimate'], 46 / 60)
        self.assertLess(summary.loc['accuracy', 'ci_lower'], summary.loc['accuracy', 'estimate'])
        self.assertGreater(summary.loc['accuracy', 'ci_upper'], summary.loc['accuracy', 'estimate'])

    def test_reproducible_and_thread_independent(self):
        matrix = confusion([[8, 2, 0], [1, 9, 1], [0, 3, 6]])
        first = bootstrap_metrics(matrix, n_bootstrap=100, seed=3)
        second = bootstrap_metrics(matrix, n_bootstrap=100, seed=3, n_jobs=4)
        pd.testing.assert_frame_equal(first, second)

    def test_replicates_returned(self):
        summary, replicates = bootstrap_metrics(confusion([[3, 1, 0], [0, 4, 0], [1, 0, 2]]),
                                                n_bootstrap=50, return_replicates=True)
        self.assertEqual(replicates.shape, (50, 4))
        self.assertEqual(list(summary.index), list(replicates.columns))

    def test_invalid_arguments(self):
        matrix = confusion([[1, 0, 0], [0, 1, 0], [0, 0, 1]])
        with self.assertRaises(ValueError):
            bootstrap_metrics(matrix, n_bootstrap=0)
        with self.assertRaises(ValueError):
            bootstrap_metrics(matrix, confidence=1.5)


if __name__ == '__main__':
    unittest.main()
