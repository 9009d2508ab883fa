import json
import logging
import os
import tempfile
import unittest

import numpy as np

import run_experiments as rx
from splay_tree import SplayTree


class AccessPatternTest(unittest.TestCase):
    def test_patterns_in_range(self):
        rng = np.random.default_rng(0)
        for pattern in rx.PATTERN_TYPES:
            keys = rx.generate_access_pattern(pattern, 50, 400, rng)
            self.assertEqual(len(keys), 400, pattern)
            self.assertTrue(all(isinstance(k, int) for k in keys), pattern)
            self.assertTrue(all(0 <= k < 50 for k in keys), pattern)

    def test_sequential(self):
        self.assertEqual(rx.generate_access_pattern('sequential', 3, 7), [0, 1, 2, 0, 1, 2, 0])

    def test_random_walk_steps(self):
        keys = rx.generate_access_pattern('random_walk', 100, 500, np.random.default_rng(1))
        self.assertTrue(all(abs(a - b) <= 1 for a, b in zip(keys, keys[1:])))

    def test_cluster_width(self):
        keys = rx.generate_access_pattern('cluster-based', 1000, 500, np.random.default_rng(2))
        self.assertLess(max(keys) - min(keys), 20)

    def test_seeded(self):
        a = rx.generate_access_pattern('temporal', 100, 300, np.random.default_rng(3))
        b = rx.generate_access_pattern('temporal', 100, 300, np.random.default_rng(3))
        self.assertEqual(a, b)

    def test_unknown_pattern_falls_back(self):
        with self.assertLogs('ExperimentLogger', level='WARNING'):
            keys = rx.generate_access_pattern('nonsense', 10, 20, np.random.default_rng(4))
        self.assertEqual(len(keys), 20)


class WorkloadTest(unittest.TestCase):
    def test_build_tree(self):
        tree = rx.build_tree([3, 1, 2])
        self.assertEqual(tree.size(), 3)
        self.assertEqual(tree.root.key, 2)
        self.assertEqual(tree.get(1), "1")

    def test_tree_metrics(self):
        metrics = rx.tree_metrics(SplayTree())
        self.assertEqual(metrics, {'size': 0, 'height': -1, 'avg_depth': 0.0, 'total_rotations': 0})

        tree = rx.build_tree(range(4))  # left spine
        metrics = rx.tree_metrics(tree)
        self.assertEqual(metrics['size'], 4)
        self.assertEqual(metrics['height'], 3)
        self.assertAlmostEqual(metrics['avg_depth'], 1.5)
        self.assertEqual(metrics['total_rotations'], 3)

    def test_run_workload(self):
        tree = rx.build_tree(range(4))
        result = rx.run_workload(tree, [0, 0, 7])
        self.assertEqual(result['accesses'], 3)
        self.assertEqual(result['hits'], 2)
        self.assertEqual(result['misses'], 1)
        self.assertAlmostEqual(result['hit_rate'], 2 / 3)
        # 0 sits at the bottom of the spine, then at the root
        self.assertEqual(result['access_depths'][:2], [3, 0])
        self.assertEqual(result['final_size'], 4)
        tree.check_invariants()

    def test_run_workload_empty(self):
        result = rx.run_workload(SplayTree(), [])
        self.assertEqual(result['accesses'], 0)
        self.assertEqual(result['hit_rate'], 0.0)
        self.assertEqual(result['rotations_per_access'], 0.0)

    def test_repeated_access_is_cheap(self):
        tree = rx.build_tree(np.random.default_rng(5).permutation(500).tolist())
        result = rx.run_workload(tree, [42] * 100)
        self.assertEqual(result['hits'], 100)
        self.assertEqual(result['access_depths'][1:], [0] * 99)

    def test_scaling_experiment(self):
        scaling = rx.scaling_experiment([10, 20], np.random.default_rng(6))
        self.assertEqual([r['n'] for r in scaling['sequential']], [10, 20])
        self.assertEqual(len(scaling['random']), 2)
        # sequential inserts rotate once per insert after the first
        self.assertAlmostEqual(scaling['sequential'][0]['rotations_per_insert'], 9 / 10)

    def test_stability(self):
        config = dict(rx.DEFAULT_CONFIG, n_keys=30, n_accesses=50)
        report = rx.stability_over_multiple_runs(config, 'uniform', 3, np.random.default_rng(7))
        self.assertEqual(len(report['avg_access_depths']), 3)
        self.assertGreaterEqual(report['std_avg_access_depth'], 0.0)

    def test_memory_usage(self):
        self.assertIsInstance(rx.memory_usage_analysis(100), float)


class AnalysisTest(unittest.TestCase):
    def setUp(self):
        config = dict(rx.DEFAULT_CONFIG, n_keys=40, n_accesses=200, patterns=['uniform', 'bursty', 'sequential'])
        self.results = rx.pattern_comparison(config, np.random.default_rng(8))

    def test_pattern_comparison(self):
        self.assertEqual(list(self.results), ['uniform', 'bursty', 'sequential'])
        for metrics in self.results.values():
            self.assertEqual(metrics['hits'], 200)
            self.assertEqual(metrics['final_size'], 40)

    def test_significance(self):
        stats_results = rx.statistical_significance_tests(self.results)
        self.assertEqual(set(stats_results), {'bursty', 'sequential'})
        self.assertEqual(rx.statistical_significance_tests({'bursty': self.results['bursty']}), {})

    def test_frame_and_outputs(self):
        df = rx.results_frame(self.results)
        self.assertEqual(list(df.index), ['uniform', 'bursty', 'sequential'])
        self.assertNotIn('access_depths', df.columns)

        with tempfile.TemporaryDirectory() as tmp:
            pearson, spearman = rx.correlation_analysis(self.results, tmp)
            self.assertEqual(pearson.shape, spearman.shape)
            self.assertTrue(os.path.exists(os.path.join(tmp, 'correlation_pearson.csv')))
            self.assertTrue(os.path.exists(rx.plot_pattern_comparison(self.results, tmp)))
            self.assertTrue(os.path.exists(rx.plot_depth_distribution(rx.build_tree(range(10)), tmp)))
            scaling = rx.scaling_experiment([10], np.random.default_rng(9))
            self.assertTrue(os.path.exists(rx.plot_scaling(scaling, tmp)))
            report = rx.profiling_analysis(range(50), range(50), tmp)
            with open(report) as f:
                self.assertIn('function calls', f.read())


class ConfigTest(unittest.TestCase):
    def test_defaults(self):
        config = rx.load_config()
        self.assertEqual(config, rx.DEFAULT_CONFIG)
        config['n_keys'] = 1
        self.assertEqual(rx.DEFAULT_CONFIG['n_keys'], 1000)

    def test_override(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.json')
            with open(path, 'w') as f:
                json.dump({'n_keys': 10, 'seed': 3}, f)
            config = rx.load_config(path)
        self.assertEqual(config['n_keys'], 10)
        self.assertEqual(config['seed'], 3)
        self.assertEqual(config['n_runs'], rx.DEFAULT_CONFIG['n_runs'])

    def test_unknown_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.json')
            with open(path, 'w') as f:
                json.dump({'use_cache': True}, f)
            with self.assertRaises(ValueError):
                rx.load_config(path)

    def test_invalid_values(self):
        bad_configs = [
            {'patterns': []},
            {'patterns': 'uniform'},
            {'n_keys': 0},
            {'n_keys': -5},
            {'n_runs': 0},
            {'n_accesses': 1.5},
            {'sizes': []},
            {'sizes': [10, 0]},
        ]
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.json')
            for overrides in bad_configs:
                with open(path, 'w') as f:
                    json.dump(overrides, f)
                with self.assertRaises(ValueError, msg=str(overrides)):
                    rx.load_config(path)

    def test_main_rejects_empty_patterns(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.json')
            with open(path, 'w') as f:
                json.dump({'patterns': []}, f)
            output_dir = os.path.join(tmp, 'results')
            with self.assertRaises(ValueError):
                rx.main(['--config', path, '--output-dir', output_dir])
            self.assertFalse(os.path.exists(output_dir))

    def test_missing_file(self):
        with self.assertLogs('ExperimentLogger', level='ERROR'):
            with self.assertRaises(OSError):
                rx.load_config('/nonexistent/config.json')

    def test_save_results(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'out.json')
            rx.save_results({'a': np.float64(1.5), 'b': np.arange(3), 'c': (np.int64(2),)}, path)
            with open(path) as f:
                self.assertEqual(json.load(f), {'a': 1.5, 'b': [0, 1, 2], 'c': [2]})

            with self.assertLogs('ExperimentLogger', level='ERROR'):
                rx.save_results({'a': 1}, os.path.join(tmp, 'missing', 'out.json'))


class MainTest(unittest.TestCase):
    def tearDown(self):
        for handler in list(rx.logger.handlers):
            handler.close()
            rx.logger.removeHandler(handler)

    def test_setup_logging_twice(self):
        with tempfile.TemporaryDirectory() as tmp:
            first = os.path.join(tmp, 'first.log')
            second = os.path.join(tmp, 'second.log')
            rx.setup_logging(first)
            old_handlers = list(rx.logger.handlers)
            rx.setup_logging(second)

            self.assertEqual(len(rx.logger.handlers), 2)
            self.assertTrue(all(h not in rx.logger.handlers for h in old_handlers))
            old_file = [h for h in old_handlers if isinstance(h, logging.FileHandler)][0]
            self.assertIsNone(old_file.stream)

            rx.logger.debug("written after the second setup")
            for handler in rx.logger.handlers:
                handler.flush()
            with open(second) as f:
                self.assertIn("written after the second setup", f.read())
            with open(first) as f:
                self.assertNotIn("written after the second setup", f.read())

    def test_main(self):
        with tempfile.TemporaryDirectory() as tmp:
            config_path = os.path.join(tmp, 'config.json')
            with open(config_path, 'w') as f:
                json.dump({'n_keys': 40, 'n_accesses': 100, 'sizes': [10, 20], 'n_runs': 2}, f)
            output_dir = os.path.join(tmp, 'results')
            rx.main(['--config', config_path, '--output-dir', output_dir, '--seed', '0',
                     '--patterns', 'uniform', 'skewed'])

            for name in ['config.json', 'pattern_comparison.json', 'statistical_tests.json', 'scaling.json',
                         'tree_metrics.json', 'memory_usage.json', 'stability_report.json',
                         'profiling_report.txt', 'correlation_pearson.csv',
                         os.path.join('logs', 'experiment.log'),
                         os.path.join('visualizations', 'pattern_comparison.png'),
                         os.path.join('visualizations', 'scaling.png'),
                         os.path.join('visualizations', 'depth_distribution.html')]:
                self.assertTrue(os.path.exists(os.path.join(output_dir, name)), name)

            with open(os.path.join(output_dir, 'pattern_comparison.json')) as f:
                self.assertEqual(set(json.load(f)), {'uniform', 'skewed'})
            with open(os.path.join(output_dir, 'tree_metrics.json')) as f:
                self.assertEqual(json.load(f)['size'], 40)


if __name__ == '__main__':
    logging.basicConfig(level=logging.WARNING)
    unittest.main()
