import logging
import os
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from edna_tools import (
    load_abundance_matrix,
    load_config,
    load_confusion_matrix,
    load_cover_data,
    load_group_map,
    log_print,
    setup_logger,
)
from edna_tools.logger import LOGGER_NAME

REPO_CONFIG = Path(__file__).resolve().parent.parent / 'config' / 'analysis_parameters.yml'


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, name, text):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, 'w') as f:
            f.write(text)
        return path

    def test_defaults(self):
        config = load_config()
        self.assertEqual(config['diversity']['permutations'], 999)
        self.assertEqual(config['bootstrap']['iterations'], 2000)
        self.assertEqual(config['differential_abundance']['pseudo_count_scale'], 1e6)

    def test_partial_override_keeps_defaults(self):
        path = self.write('config.yml', 'diversity:\n  permutations: 99\n')
        config = load_config(path)
        self.assertEqual(config['diversity']['permutations'], 99)
        self.assertEqual(config['diversity']['nmds_trymax'], 20)
        self.assertEqual(config['bootstrap']['seed'], 42)

    def test_defaults_not_mutated(self):
        path = self.write('config.yml', 'bootstrap:\n  seed: 1\n')
        load_config(path)
        self.assertEqual(load_config()['bootstrap']['seed'], 42)

    def test_non_mapping_raises(self):
        path = self.write('config.yml', '- a\n- b\n')
        with self.assertRaises(ValueError):
            load_config(path)

    def test_repository_config(self):
        config = load_config(REPO_CONFIG)
        self.assertEqual(config['metadata']['group_prefixes'], {'CFA': 'CFA', 'CFC': 'CFC'})
        self.assertEqual(config['metadata']['group_column'], 'Group')


class TestLoaders(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def path(self, name):
        return os.path.join(self.tmpdir.name, name)

    def test_group_map(self):
        pd.DataFrame({'Sample': ['CFA1', 'X2'], 'Group': ['CFA', 'CFC']}).to_csv(self.path('groups.csv'), index=False)
        self.assertEqual(load_group_map(self.path('groups.csv')), {'CFA1': 'CFA', 'X2': 'CFC'})

    def test_abundance_matrix(self):
        frame = pd.DataFrame({'sp1': [1.0, 0.0], 'sp2': [0.5, 2.0]}, index=pd.Index(['CFA1', 'CFC1'], name='Sample'))
        frame.to_csv(self.path('abundance.csv'))
        loaded = load_abundance_matrix(self.path('abundance.csv'))
        pd.testing.assert_frame_equal(loaded, frame)

    def test_confusion_matrix(self):
        pd.DataFrame([[3, 1], [0, 4]], index=['CFA', 'CFC'], columns=['CFA', 'CFC']).to_csv(self.path('cm.csv'))
        confusion_df = load_confusion_matrix(self.path('cm.csv'))
        self.assertEqual(list(confusion_df.index), ['CFA', 'CFC'])
        self.assertEqual(confusion_df.loc['CFA', 'CFC'], 1)

    def test_cover_data(self):
        pd.DataFrame({
            'Area': ['North', 'South', 'North'],
            'Year': [2021, 2022, 2022],
            'Class': ['Reef', 'Sand', 'Reef'],
            'Cover': ['12%', '3.5', None],
        }).to_csv(self.path('cover.csv'), index=False)
        cover_df = load_cover_data(self.path('cover.csv'))
        self.assertEqual(cover_df['Cover'].tolist(), [12.0, 3.5])
        self.assertEqual(cover_df['Year'].tolist(), ['2021', '2022'])


class TestLogger(unittest.TestCase):

    def test_file_logging(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, 'run.log')
            logger = setup_logger(log_file=log_file, log_level=logging.DEBUG)
            setup_logger(log_file=log_file, log_level=logging.DEBUG)
            log_print('reshaping started')
            log_print('low stress', level='warning')
            self.assertEqual(len(logging.getLogger(LOGGER_NAME).handlers), 2)
            for handler in logger.handlers:
                handler.flush()
            with open(log_file) as f:
                content = f.read()
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        self.assertIn('INFO - reshaping started', content)
        self.assertIn('WARNING - low stress', content)


if __name__ == '__main__':
    unittest.main()
