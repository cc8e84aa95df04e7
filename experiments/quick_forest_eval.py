import argparse
import time
import sys
from pathlib import Path

import numpy as np

# Allow running as: python experiments/quick_forest_eval.py
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from honestforest import (
    DefaultData,
    ForestOptions,
    TreeOptions,
    causal_trainer,
    enable_logging,
    instrumental_predictor,
    regression_predictor,
    regression_trainer,
)


def _train_test_split(n, test_size, random_state):
    rng = np.random.default_rng(random_state)
    idx = np.arange(n)
    rng.shuffle(idx)
    n_test = max(1, int(round(n * test_size)))
    return idx[n_test:], idx[:n_test]


def _rmse(y_true, y_pred):
    mask = ~np.isnan(y_pred)
    return float(np.sqrt(np.mean((y_true[mask] - y_pred[mask]) ** 2)))


def load_dataset(name: str, random_state: int, n_samples: int, n_features: int):
    """Synthetic data as (X, y, w, true_signal); w is None for regression."""
    rng = np.random.default_rng(random_state)
    key = name.lower()
    X = rng.normal(size=(n_samples, n_features))

    if key == "synthetic_reg":
        signal = 2.0 * X[:, 0] - 1.5 * (X[:, 1] > 0)
        y = signal + rng.normal(size=n_samples)
        return X, y, None, signal

    if key == "synthetic_causal":
        w = rng.binomial(1, 0.5, size=n_samples).astype(np.float64)
        tau = 1.0 + (X[:, 0] > 0)
        y = X[:, 1] + tau * w + rng.normal(size=n_samples)
        return X, y, w, tau

    raise ValueError(f"Unknown dataset '{name}'. Choose from: synthetic_reg, synthetic_causal")


def evaluate_one(X, y, w, signal, args):
    train_idx, test_idx = _train_test_split(X.shape[0], test_size=0.2, random_state=args.random_state)
    num_features = X.shape[1]

    if w is None:
        table = np.column_stack([X, y])
        trainer = regression_trainer(outcome_index=num_features, alpha=args.alpha)
        predictor = regression_predictor(num_threads=args.num_threads)
    else:
        table = np.column_stack([X, y, w])
        trainer = causal_trainer(outcome_index=num_features, treatment_index=num_features + 1, alpha=args.alpha)
        predictor = instrumental_predictor(num_threads=args.num_threads)

    train_data = DefaultData(table[train_idx])
    test_data = DefaultData(table[test_idx])

    options = ForestOptions(
        tree_options=TreeOptions(
            mtry=args.mtry if args.mtry > 0 else max(1, int(np.ceil(np.sqrt(num_features)))),
            min_node_size=args.min_node_size,
            honesty=not args.no_honesty,
        ),
        num_trees=args.num_trees,
        ci_group_size=args.ci_group_size,
        sample_fraction=args.sample_fraction,
        num_threads=args.num_threads,
        random_state=args.random_state,
    )

    t0 = time.perf_counter()
    forest = trainer.train(train_data, options)
    fit_time = time.perf_counter() - t0

    estimate_variance = args.ci_group_size > 1
    t0 = time.perf_counter()
    test_predictions = predictor.predict(forest, test_data, estimate_variance=estimate_variance)
    predict_time = time.perf_counter() - t0
    oob_predictions = predictor.predict_oob(forest, train_data)

    test_pred = np.array([p.get_predictions()[0] for p in test_predictions])
    oob_pred = np.array([p.get_predictions()[0] for p in oob_predictions])

    out = {
        "fit_time_sec": fit_time,
        "predict_time_sec": predict_time,
        "rmse_vs_signal": _rmse(signal[test_idx], test_pred),
        "oob_rmse_vs_signal": _rmse(signal[train_idx], oob_pred),
        "mean_leaves_per_tree": trainer.metrics["mean_leaves_per_tree"],
        "mean_variance": float("nan"),
        "coverage": float("nan"),
    }
    if estimate_variance:
        variance = np.array([p.get_variance_estimates()[0] for p in test_predictions])
        mask = ~np.isnan(variance) & ~np.isnan(test_pred)
        half_width = 1.96 * np.sqrt(variance[mask])
        out["mean_variance"] = float(np.mean(variance[mask]))
        out["coverage"] = float(np.mean(np.abs(test_pred[mask] - signal[test_idx][mask]) <= half_width))
    return out


def main():
    parser = argparse.ArgumentParser(description="Quick honest forest checks on synthetic data")
    parser.add_argument(
        "--datasets",
        type=str,
        default="synthetic_reg,synthetic_causal",
        help="Comma-separated: synthetic_reg, synthetic_causal",
    )
    parser.add_argument("--n-samples", type=int, default=2000)
    parser.add_argument("--n-features", type=int, default=10)
    parser.add_argument("--num-trees", type=int, default=200)
    parser.add_argument("--ci-group-size", type=int, default=2)
    parser.add_argument("--sample-fraction", type=float, default=0.5)
    parser.add_argument("--mtry", type=int, default=0, help="<=0 uses ceil(sqrt(n_features))")
    parser.add_argument("--min-node-size", type=int, default=5)
    parser.add_argument("--alpha", type=float, default=0.05)
    parser.add_argument("--no-honesty", action="store_true", help="Grow adaptive (non-honest) trees.")
    parser.add_argument("--num-threads", type=int, default=None)
    parser.add_argument("--random-state", type=int, default=42)
    parser.add_argument("--verbose", action="store_true", help="Show library log output.")

    args = parser.parse_args()

    datasets = [d.strip() for d in args.datasets.split(",") if d.strip()]
    if not datasets:
        raise ValueError("No datasets provided")

    handle = enable_logging(level="INFO") if args.verbose else None
    try:
        for ds_name in datasets:
            X, y, w, signal = load_dataset(ds_name, args.random_state, args.n_samples, args.n_features)
            print(f"\nDataset={ds_name} n={X.shape[0]} d={X.shape[1]}")

            out = evaluate_one(X, y, w, signal, args)
            print(
                "HonestForest"
                f" fit_time={out['fit_time_sec']:.3f}s"
                f" predict_time={out['predict_time_sec']:.3f}s"
                f" rmse={out['rmse_vs_signal']:.4f}"
                f" oob_rmse={out['oob_rmse_vs_signal']:.4f}"
            )
            print(
                "  diagnostics"
                f" leaves_per_tree={out['mean_leaves_per_tree']:.1f}"
                f" mean_variance={out['mean_variance']:.4f}"
                f" coverage_95={out['coverage']:.2f}"
            )
    finally:
        if handle is not None:
            handle.disable()


if __name__ == "__main__":
    main()
