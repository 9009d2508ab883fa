# run_experiments.py

import argparse
import cProfile
import gc
import json
import logging
import os
import pstats
import time
from io import StringIO
from typing import List, Optional, Sequence

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import plotly.graph_objects as go
import psutil
import scipy.stats as stats
import seaborn as sns
from tqdm import tqdm

from splay_tree import SplayTree

# ==========================
# 1. Logging and Configuration
# ==========================

logger = logging.getLogger('ExperimentLogger')

PATTERN_TYPES = ['uniform', 'skewed', 'zipfian', 'temporal', 'cluster-based',
                 'random_walk', 'bursty', 'sequential']

DEFAULT_CONFIG = {
    'n_keys': 1000,
    'n_accesses': 5000,
    'patterns': ['uniform', 'skewed', 'temporal', 'cluster-based', 'random_walk', 'bursty', 'sequential'],
    'sizes': [100, 1000, 10000],
    'n_runs': 5,
    'seed': None,
    'output_dir': 'results',
}


def setup_logging(log_file: str):
    """
    Sets up logging to both console and file with detailed formatting.
    Handlers from an earlier call are closed and replaced, so output follows the newest log file.

    Parameters:
        log_file (str): Path to the log file.
    """
    logger.setLevel(logging.DEBUG)  # Capture all levels

    # Avoid duplicate logs
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Formatter for detailed logs
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    # Console handler for INFO level and above
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)

    # File handler for DEBUG level and above
    fh = logging.FileHandler(log_file)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    logger.addHandler(ch)
    logger.addHandler(fh)
    return logger


def _validate_config(config: dict):
    """Raises ValueError for settings no experiment can run with."""
    if not isinstance(config['patterns'], list) or not config['patterns']:
        raise ValueError("'patterns' must be a non-empty list of access pattern names.")
    for key in ('n_keys', 'n_accesses', 'n_runs'):
        value = config[key]
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"'{key}' must be a positive integer, got {value!r}.")
    sizes = config['sizes']
    if not isinstance(sizes, list) or not sizes or \
            not all(isinstance(n, int) and not isinstance(n, bool) and n > 0 for n in sizes):
        raise ValueError(f"'sizes' must be a non-empty list of positive integers, got {sizes!r}.")


def load_config(path: Optional[str] = None) -> dict:
    """
    Loads the experiment configuration.

    Parameters:
        path (str): Optional JSON file whose keys override DEFAULT_CONFIG.

    Returns:
        dict: The merged configuration.
    """
    config = DEFAULT_CONFIG.copy()
    if path is None:
        return config
    try:
        with open(path) as f:
            overrides = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load configuration from '{path}': {e}")
        raise
    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration in '{path}' must be a JSON object.")
    unknown = set(overrides) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
    config.update(overrides)
    _validate_config(config)
    logger.info(f"Configuration loaded from '{path}'.")
    return config

# ==========================
# 2. Utility Functions
# ==========================

def _to_builtin(obj):
    if isinstance(obj, dict):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(v) for v in obj]
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj


def save_results(data, filepath: str):
    """
    Saves data to a JSON file.

    Parameters:
        data (dict): The data to save.
        filepath (str): The path to the JSON file.
    """
    try:
        with open(filepath, 'w') as f:
            json.dump(_to_builtin(data), f, indent=4)
        logger.info(f"Results saved successfully to '{filepath}'.")
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save results to '{filepath}': {e}")


def generate_access_pattern(pattern_type: str, size: int, n: int,
                            rng: Optional[np.random.Generator] = None) -> List[int]:
    """
    Generates different types of access patterns for experimentation.

    Parameters:
        pattern_type (str): Type of access pattern to generate.
        size (int): Range of keys (0 to size-1).
        n (int): Number of accesses to generate.
        rng (np.random.Generator): Source of randomness.

    Returns:
        List[int]: List of access keys.
    """
    rng = rng if rng is not None else np.random.default_rng()
    logger.debug(f"Generating access pattern: {pattern_type}, Size: {size}, Number of accesses: {n}")
    if pattern_type in ('skewed', 'zipfian'):
        weights = rng.zipf(2, size).astype(float)
        pattern = rng.choice(size, n, p=weights / weights.sum())
    elif pattern_type == 'temporal':
        access_pattern = []
        recent_items = []
        for _ in range(n):
            if recent_items and rng.random() < 0.7:
                access_pattern.append(recent_items[rng.integers(len(recent_items))])
            else:
                key = int(rng.integers(0, size))
                access_pattern.append(key)
                recent_items.append(key)
                if len(recent_items) > 100:
                    recent_items.pop(0)
        pattern = np.array(access_pattern)
    elif pattern_type == 'cluster-based':
        cluster_center = int(rng.integers(0, size))
        low, high = max(0, cluster_center - 10), min(size, cluster_center + 10)
        pattern = rng.integers(low, high, n)
    elif pattern_type == 'random_walk':
        pattern = np.empty(n, dtype=int)
        current = int(rng.integers(0, size))
        for i in range(n):
            pattern[i] = current
            current = min(size - 1, max(0, current + int(rng.choice([-1, 1]))))
    elif pattern_type == 'bursty':
        burst_prob = 0.8
        access_pattern = []
        last_accessed = None
        for _ in range(n):
            if last_accessed is None or rng.random() >= burst_prob:
                last_accessed = int(rng.integers(0, size))
            access_pattern.append(last_accessed)
        pattern = np.array(access_pattern)
    elif pattern_type == 'sequential':
        pattern = np.arange(n) % size
    else:
        if pattern_type != 'uniform':
            logger.warning(f"Unknown pattern type: {pattern_type}. Defaulting to uniform pattern.")
        pattern = rng.integers(0, size, n)
    logger.debug(f"Access pattern generated with {len(pattern)} accesses.")
    return [int(k) for k in pattern]

# ==========================
# 3. Splay Tree Workloads
# ==========================

def build_tree(keys: Sequence[int], desc: str = "Building Splay Tree") -> SplayTree:
    """
    Inserts every key into a fresh splay tree; the value stored is the key as a string.

    Parameters:
        keys (Sequence[int]): Keys in insertion order.
        desc (str): Progress bar label.

    Returns:
        SplayTree: The populated tree.
    """
    tree = SplayTree()
    for key in tqdm(keys, desc=desc, disable=len(keys) < 1000):
        tree.put(key, str(key))
    logger.debug(f"Built tree with {tree.size()} entries and {tree.total_rotations} rotations.")
    return tree


def tree_metrics(tree: SplayTree) -> dict:
    """Summarizes the current shape of the tree."""
    depths = tree.depths()
    return {
        'size': tree.size(),
        'height': tree.height(),
        'avg_depth': float(np.mean(depths)) if depths else 0.0,
        'total_rotations': tree.total_rotations,
    }


def _search_depth(tree: SplayTree, key) -> int:
    """Depth of the node where a top-down search for key stops, without splaying."""
    node = tree.root
    depth = 0
    while node is not None:
        if key < node.key:
            if node.left is None:
                break
            node = node.left
        elif key > node.key:
            if node.right is None:
                break
            node = node.right
        else:
            break
        depth += 1
    return depth


def run_workload(tree: SplayTree, access_pattern: Sequence[int], desc: str = "Running Workload") -> dict:
    """
    Looks up every key of the access pattern and records the search cost of each access.

    Parameters:
        tree (SplayTree): The tree to query.
        access_pattern (Sequence[int]): Keys to look up, in order.
        desc (str): Progress bar label.

    Returns:
        dict: Hit/miss counts, search depths, rotations per access, runtime and final tree metrics.
    """
    hits = misses = 0
    access_depths = np.zeros(len(access_pattern), dtype=int)
    rotations_before = tree.total_rotations
    missing = object()

    start_time = time.perf_counter()
    for i, key in enumerate(tqdm(access_pattern, desc=desc, disable=len(access_pattern) < 1000)):
        access_depths[i] = _search_depth(tree, key)
        if tree.get(key, missing) is missing:
            misses += 1
        else:
            hits += 1
    runtime = time.perf_counter() - start_time

    n = len(access_pattern)
    rotations = tree.total_rotations - rotations_before
    result = {
        'accesses': n,
        'hits': hits,
        'misses': misses,
        'hit_rate': hits / n if n else 0.0,
        'avg_access_depth': float(access_depths.mean()) if n else 0.0,
        'rotations_per_access': rotations / n if n else 0.0,
        'runtime_seconds': runtime,
        'access_depths': access_depths.tolist(),
    }
    result.update({f"final_{k}": v for k, v in tree_metrics(tree).items()})
    logger.debug(f"Workload done: {hits} hits, {misses} misses, "
                 f"avg depth {result['avg_access_depth']:.4f}, runtime {runtime:.4f}s.")
    return result

# ==========================
# 4. Experiments
# ==========================

def pattern_comparison(config: dict, rng: np.random.Generator) -> dict:
    """
    Runs one workload per access pattern against a tree holding the whole key universe.

    Parameters:
        config (dict): Experiment configuration.
        rng (np.random.Generator): Source of randomness.

    Returns:
        dict: Workload results keyed by pattern name.
    """
    logger.info("Starting access pattern comparison.")
    results = {}
    for pattern in config['patterns']:
        logger.info(f"Testing access pattern: {pattern}")
        keys = rng.permutation(config['n_keys']).tolist()
        tree = build_tree(keys)
        access_pattern = generate_access_pattern(pattern, config['n_keys'], config['n_accesses'], rng)
        results[pattern] = run_workload(tree, access_pattern, desc=f"Pattern {pattern}")
        logger.info(f"Results for {pattern}: Avg Access Depth = {results[pattern]['avg_access_depth']:.4f}, "
                    f"Rotations/Access = {results[pattern]['rotations_per_access']:.4f}")
        # Clean up
        del tree
        gc.collect()
    logger.info("Access pattern comparison completed.")
    return results


def scaling_experiment(sizes: Sequence[int], rng: np.random.Generator) -> dict:
    """
    Measures average rotations per operation as the tree grows, for sequential and random
    insertion orders. Each run inserts n keys and then looks every key up once, in the same order.

    Parameters:
        sizes (Sequence[int]): Tree sizes to test.
        rng (np.random.Generator): Source of randomness.

    Returns:
        dict: {'sequential': [...], 'random': [...]}, each a list of per-size records.
    """
    logger.info(f"Starting scaling experiment for sizes {list(sizes)}.")
    results = {'sequential': [], 'random': []}
    for n in sizes:
        for order in results:
            keys = list(range(n)) if order == 'sequential' else rng.permutation(n).tolist()
            tree = build_tree(keys, desc=f"{order} n={n}")
            insert_rotations = tree.total_rotations
            workload = run_workload(tree, keys, desc=f"{order} lookups n={n}")
            results[order].append({
                'n': n,
                'rotations_per_insert': insert_rotations / n,
                'rotations_per_lookup': workload['rotations_per_access'],
                'rotations_per_op': tree.total_rotations / (2 * n),
                'final_height': workload['final_height'],
            })
            logger.info(f"{order} n={n}: rotations/op = {results[order][-1]['rotations_per_op']:.4f}")
            del tree
            gc.collect()
    logger.info("Scaling experiment completed.")
    return results


def memory_usage_analysis(n_keys: int) -> float:
    """
    Analyzes memory usage of building a tree.

    Parameters:
        n_keys (int): Number of keys to insert.

    Returns:
        float: Memory used in MB.
    """
    logger.info("Analyzing memory usage.")
    gc.collect()
    process = psutil.Process(os.getpid())
    mem_before = process.memory_info().rss / (1024 ** 2)  # in MB
    tree = build_tree(list(range(n_keys)), desc="Memory Usage Measurement")
    mem_after = process.memory_info().rss / (1024 ** 2)  # in MB
    memory_used = mem_after - mem_before
    logger.info(f"Memory Usage: {memory_used:.4f} MB for {tree.size()} entries.")
    return memory_used


def stability_over_multiple_runs(config: dict, pattern: str, n_runs: int, rng: np.random.Generator) -> dict:
    """
    Ensures consistent performance across multiple experiment runs.

    Parameters:
        config (dict): Experiment configuration.
        pattern (str): Access pattern used in every run.
        n_runs (int): Number of runs to perform.
        rng (np.random.Generator): Source of randomness.

    Returns:
        dict: Per-run values with their mean and standard deviation.
    """
    logger.info(f"Assessing stability over {n_runs} runs.")
    avg_depths = []
    rotation_rates = []
    for run in range(1, n_runs + 1):
        keys = rng.permutation(config['n_keys']).tolist()
        tree = build_tree(keys)
        access_pattern = generate_access_pattern(pattern, config['n_keys'], config['n_accesses'], rng)
        result = run_workload(tree, access_pattern, desc=f"Stability run {run}")
        avg_depths.append(result['avg_access_depth'])
        rotation_rates.append(result['rotations_per_access'])
        logger.info(f"Run {run}: Avg Access Depth = {avg_depths[-1]:.4f}")
        del tree
        gc.collect()

    report = {
        'pattern': pattern,
        'n_runs': n_runs,
        'avg_access_depths': avg_depths,
        'rotations_per_access': rotation_rates,
        'mean_avg_access_depth': float(np.mean(avg_depths)),
        'std_avg_access_depth': float(np.std(avg_depths)),
        'mean_rotations_per_access': float(np.mean(rotation_rates)),
        'std_rotations_per_access': float(np.std(rotation_rates)),
    }
    logger.info(f"Stability assessment completed. Mean Depth: {report['mean_avg_access_depth']:.4f}, "
                f"Std Dev: {report['std_avg_access_depth']:.4f}")
    return report

# ==========================
# 5. Analysis Functions
# ==========================

def statistical_significance_tests(results: dict, baseline: str = 'uniform') -> dict:
    """
    Performs Welch's t-test of each pattern's per-access search depths against the baseline pattern.

    Parameters:
        results (dict): Output of pattern_comparison.
        baseline (str): Pattern used as the reference sample.

    Returns:
        dict: t statistic and p value per pattern.
    """
    logger.info("Performing statistical significance tests.")
    if baseline not in results:
        logger.warning(f"Baseline pattern '{baseline}' missing; skipping significance tests.")
        return {}
    base_depths = results[baseline]['access_depths']
    stats_results = {}
    for pattern, metrics in results.items():
        if pattern == baseline:
            continue
        t_stat, p_value = stats.ttest_ind(metrics['access_depths'], base_depths, equal_var=False)
        stats_results[pattern] = {'t_stat': float(t_stat), 'p_value': float(p_value)}
        logger.debug(f"Statistical Test for {pattern}: t_stat = {t_stat:.4f}, p_value = {p_value:.4f}")
    logger.info("Statistical significance tests completed.")
    return stats_results


def results_frame(results: dict) -> pd.DataFrame:
    """One row of scalar metrics per access pattern."""
    rows = []
    for pattern, metrics in results.items():
        row = {k: v for k, v in metrics.items() if k != 'access_depths'}
        row['pattern'] = pattern
        rows.append(row)
    return pd.DataFrame(rows).set_index('pattern')


def correlation_analysis(results: dict, output_dir: str):
    """
    Performs Pearson and Spearman correlation analysis between the per-pattern metrics.

    Parameters:
        results (dict): Output of pattern_comparison.
        output_dir (str): Directory for the CSV files.

    Returns:
        Tuple[pd.DataFrame, pd.DataFrame]: Pearson and Spearman correlation matrices.
    """
    logger.info("Performing correlation analysis.")
    df = results_frame(results)[['hit_rate', 'avg_access_depth', 'rotations_per_access',
                                 'runtime_seconds', 'final_height', 'final_avg_depth']]
    pearson_corr = df.corr(method='pearson')
    spearman_corr = df.corr(method='spearman')

    # Save correlation matrices
    pearson_corr.to_csv(os.path.join(output_dir, 'correlation_pearson.csv'))
    spearman_corr.to_csv(os.path.join(output_dir, 'correlation_spearman.csv'))
    logger.info("Correlation analysis completed and saved.")
    return pearson_corr, spearman_corr


def profiling_analysis(keys: Sequence[int], access_pattern: Sequence[int], output_dir: str) -> str:
    """
    Profiles the tree operations to identify performance bottlenecks.

    Parameters:
        keys (Sequence[int]): Keys to insert.
        access_pattern (Sequence[int]): Keys to look up afterwards.
        output_dir (str): Directory for the report.

    Returns:
        str: Path of the written report.
    """
    logger.info("Starting profiling analysis.")
    profiler = cProfile.Profile()
    profiler.enable()
    tree = build_tree(keys)
    for key in access_pattern:
        tree.get(key)
    profiler.disable()

    s = StringIO()
    ps = pstats.Stats(profiler, stream=s).sort_stats('cumulative')
    ps.print_stats(10)  # Print top 10 functions

    report_path = os.path.join(output_dir, 'profiling_report.txt')
    with open(report_path, 'w') as f:
        f.write(s.getvalue())
    logger.info(f"Profiling analysis completed and report saved as '{report_path}'.")
    return report_path

# ==========================
# 6. Visualizations
# ==========================

def plot_pattern_comparison(results: dict, output_dir: str) -> str:
    """Bar chart of average search depth per access pattern."""
    df = results_frame(results).reset_index()
    plt.figure(figsize=(10, 6))
    sns.barplot(data=df, x='pattern', y='avg_access_depth')
    plt.title('Average Search Depth per Access Pattern')
    plt.xlabel('Access Pattern')
    plt.ylabel('Average Search Depth')
    plt.xticks(rotation=30)
    plt.tight_layout()
    path = os.path.join(output_dir, 'pattern_comparison.png')
    plt.savefig(path)
    plt.close()
    logger.info(f"Pattern comparison visualization saved as '{path}'.")
    return path


def plot_scaling(scaling: dict, output_dir: str) -> str:
    """Rotations per operation against tree size for each insertion order."""
    plt.figure(figsize=(10, 6))
    for order, records in scaling.items():
        plt.plot([r['n'] for r in records], [r['rotations_per_op'] for r in records], marker='o', label=order)
    plt.xscale('log')
    plt.title('Average Rotations per Operation')
    plt.xlabel('Number of elements in splay tree (log. scale)')
    plt.ylabel('Average number of rotations per operation')
    plt.legend()
    plt.tight_layout()
    path = os.path.join(output_dir, 'scaling.png')
    plt.savefig(path)
    plt.close()
    logger.info(f"Scaling visualization saved as '{path}'.")
    return path


def plot_depth_distribution(tree: SplayTree, output_dir: str, title: str = 'Node Depth Distribution') -> str:
    """Interactive histogram of the depth of every node, written as HTML."""
    fig = go.Figure(data=[go.Histogram(x=tree.depths())])
    fig.update_layout(title=title, xaxis_title='Depth', yaxis_title='Number of nodes')
    path = os.path.join(output_dir, 'depth_distribution.html')
    fig.write_html(path)
    logger.info(f"Depth distribution visualization saved as '{path}'.")
    return path

# ==========================
# 7. Main Execution Flow
# ==========================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run splay tree access pattern experiments.")
    parser.add_argument("--config", default=None, type=str, help="JSON file overriding the default configuration.")
    parser.add_argument("--output-dir", default=None, type=str, help="Directory for results.")
    parser.add_argument("--seed", default=None, type=int, help="Random seed.")
    parser.add_argument("--patterns", default=None, nargs="+", choices=PATTERN_TYPES, help="Access patterns to compare.")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main function to run all experiments and generate visualizations and logs.
    """
    args = parse_args(argv)
    config = load_config(args.config)
    for key in ('output_dir', 'seed', 'patterns'):
        if getattr(args, key) is not None:
            config[key] = getattr(args, key)
    _validate_config(config)

    output_dir = config['output_dir']
    os.makedirs(os.path.join(output_dir, 'visualizations'), exist_ok=True)
    os.makedirs(os.path.join(output_dir, 'logs'), exist_ok=True)
    setup_logging(os.path.join(output_dir, 'logs', 'experiment.log'))
    logger.info("=== Starting Splay Tree Experiments ===")
    logger.info(f"Configuration: {config}")
    save_results(config, os.path.join(output_dir, 'config.json'))

    rng = np.random.default_rng(config['seed'])
    visualizations = os.path.join(output_dir, 'visualizations')

    # Access pattern comparison
    results = pattern_comparison(config, rng)
    save_results(results, os.path.join(output_dir, 'pattern_comparison.json'))
    plot_pattern_comparison(results, visualizations)

    stats_results = statistical_significance_tests(results)
    save_results(stats_results, os.path.join(output_dir, 'statistical_tests.json'))
    if len(results) > 1:
        correlation_analysis(results, output_dir)

    # Scaling
    scaling = scaling_experiment(config['sizes'], rng)
    save_results(scaling, os.path.join(output_dir, 'scaling.json'))
    plot_scaling(scaling, visualizations)

    # Tree shape after a random build
    keys = rng.permutation(config['n_keys']).tolist()
    tree = build_tree(keys)
    save_results(tree_metrics(tree), os.path.join(output_dir, 'tree_metrics.json'))
    plot_depth_distribution(tree, visualizations)

    # Memory Usage Analysis
    memory_used = memory_usage_analysis(config['n_keys'])
    save_results({'memory_used_mb': memory_used}, os.path.join(output_dir, 'memory_usage.json'))

    # Profiling Analysis
    access_pattern = generate_access_pattern('uniform', config['n_keys'], config['n_accesses'], rng)
    profiling_analysis(keys, access_pattern, output_dir)

    # Stability Over Multiple Runs
    stability = stability_over_multiple_runs(config, config['patterns'][0], config['n_runs'], rng)
    save_results(stability, os.path.join(output_dir, 'stability_report.json'))

    logger.info("=== All experiments and analyses completed successfully! ===")


if __name__ == "__main__":
    main()
