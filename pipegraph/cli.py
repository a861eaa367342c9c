"""
Command-line interface for pipegraph.

Subcommands:
    benchmark  Resample every configured learner on a CSV dataset and report scores
    train      Train one configured learner on a CSV dataset and save it with joblib
    predict    Load a saved learner, predict a CSV dataset and write the predictions
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import psutil

from .benchmark import BenchmarkResult, benchmark, benchmark_grid
from .config import PipelineConfig, build_learner
from .dataset import Dataset
from .persistence import load_learner, save_learner
from .resampling import make_resampling

logger = logging.getLogger(__name__)


class RunState:
    """Tracks execution state of a CLI run."""

    def __init__(self):
        """Initialize run state."""
        self.start_time = datetime.now()
        self.end_time = None
        self.current_step = "initialized"
        self.steps_completed = []
        self.memory_usage = {}
        self.error_log = []

    def start_step(self, step_name: str) -> None:
        """Start a run step."""
        self.current_step = step_name
        self.update_memory_usage()
        logger.info(f"Starting step: {step_name}")

    def complete_step(self, step_name: str, result: Any = None) -> None:
        """Mark step as completed."""
        self.steps_completed.append(
            {
                "name": step_name,
                "completed_at": datetime.now().isoformat(),
                "result_summary": self._summarize_result(result),
            }
        )
        self.update_memory_usage()
        logger.info(f"Completed step: {step_name}")

    def _summarize_result(self, result: Any) -> str:
        """Create summary of step result."""
        if isinstance(result, Dataset):
            return f"Rows: {result.nrow}, Features: {len(result.feature_names)}"
        elif isinstance(result, BenchmarkResult):
            return f"Experiments: {len(result)}"
        elif isinstance(result, pd.DataFrame):
            return f"Rows: {len(result)}"
        elif isinstance(result, list):
            return f"Count: {len(result)}"
        elif result is None:
            return ""
        else:
            return str(result)

    def add_error(self, error: Exception, step: str) -> None:
        """Add error to log."""
        self.error_log.append({"step": step, "error": str(error), "timestamp": datetime.now().isoformat()})

    def update_memory_usage(self) -> None:
        """Update current memory usage."""
        process = psutil.Process()
        self.memory_usage[datetime.now().isoformat()] = {
            "memory_mb": process.memory_info().rss / 1024 / 1024,
            "memory_percent": process.memory_percent(),
        }

    def get_summary(self) -> Dict[str, Any]:
        """Get run execution summary."""
        end_time = self.end_time or datetime.now()
        return {
            "execution_time_seconds": (end_time - self.start_time).total_seconds(),
            "steps_completed": len(self.steps_completed),
            "memory_peak_mb": (
                max(m["memory_mb"] for m in self.memory_usage.values()) if self.memory_usage else 0
            ),
            "errors": len(self.error_log),
            "current_step": self.current_step,
        }


def _setup_logging(config: PipelineConfig, verbose: bool = False) -> None:
    """Configure root logging with a file handler and a stream handler."""
    log_file = config.log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _resolve_target(args: argparse.Namespace, config: PipelineConfig) -> str:
    target = args.target or config.experiment.target
    if not target:
        raise ValueError("No target column given (use --target or experiment.target)")
    return target


def _load_dataset(
    path: str,
    target: Optional[str],
    config: PipelineConfig,
    column_types: Optional[Dict[str, str]] = None,
) -> Dataset:
    """Load a CSV with the configured column types; the target is used only if present.

    ``column_types`` take precedence over the configured types.
    """
    columns = set(pd.read_csv(path, nrows=0).columns)
    declared = {**config.experiment.column_types, **(column_types or {})}
    column_types = {name: kind for name, kind in declared.items() if name in columns}
    if target is not None and target not in columns:
        target = None
    return Dataset.from_csv(path, target=target, column_types=column_types)


def run_benchmark(args: argparse.Namespace, config: PipelineConfig, state: RunState) -> pd.DataFrame:
    """Benchmark all configured learners on one dataset."""
    experiment = config.experiment
    target = _resolve_target(args, config)

    state.start_step("load_data")
    dataset = _load_dataset(args.data, target, config)
    if dataset.target is None:
        raise ValueError(f"Target column '{target}' not found in {args.data}")
    state.complete_step("load_data", dataset)

    state.start_step("benchmark")
    learners = [build_learner(learner_config) for learner_config in experiment.learners]
    design = benchmark_grid([dataset], learners, [make_resampling(experiment.resampling)], seed=experiment.seed)
    result = benchmark(design, progress=not args.quiet)
    state.complete_step("benchmark", result)

    scores = result.aggregate(experiment.measures)

    output_dir = Path(args.output_dir) if args.output_dir else config.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    scores.to_csv(output_dir / "benchmark_scores.csv", index=False)
    result.score(experiment.measures).to_csv(output_dir / "benchmark_iterations.csv", index=False)
    logger.info(f"Benchmark scores written to {output_dir}")

    if args.format == "json":
        print(json.dumps(scores.to_dict(orient="records"), indent=2, default=str))
    else:
        print(scores.to_string(index=False))
    return scores


def run_train(args: argparse.Namespace, config: PipelineConfig, state: RunState) -> Path:
    """Train one configured learner on the full dataset and save it."""
    experiment = config.experiment
    target = _resolve_target(args, config)

    state.start_step("load_data")
    dataset = _load_dataset(args.data, target, config)
    if dataset.target is None:
        raise ValueError(f"Target column '{target}' not found in {args.data}")
    state.complete_step("load_data", dataset)

    learners = [build_learner(learner_config) for learner_config in experiment.learners]
    if args.learner:
        matching = [learner for learner in learners if learner.id == args.learner]
        if not matching:
            raise ValueError(f"No configured learner with id '{args.learner}', have {[l.id for l in learners]}")
        learner = matching[0]
    else:
        learner = learners[0]

    state.start_step("train")
    learner.train(dataset)
    state.complete_step("train", learner.id)

    model_path = Path(args.model) if args.model else config.output_dir / "models" / f"{learner.id}.joblib"
    save_learner(learner, model_path, metadata={"data": str(args.data), "target": target})
    print(f"💾 Saved trained learner '{learner.id}' to {model_path}")
    return model_path


def run_predict(args: argparse.Namespace, config: PipelineConfig, state: RunState) -> pd.DataFrame:
    """Predict a CSV dataset with a saved learner."""
    state.start_step("load_model")
    learner = load_learner(args.model)
    state.complete_step("load_model", learner.id)

    state.start_step("predict")
    # Read columns with the types the learner was trained on
    trained_types = {name: entry["type"] for name, entry in (learner.feature_info or {}).items()}
    dataset = _load_dataset(args.data, args.target or config.experiment.target, config, trained_types)
    prediction = learner.predict(dataset)
    predictions = prediction.to_frame()
    state.complete_step("predict", predictions)

    output = Path(args.output) if args.output else config.output_dir / "predictions.csv"
    output.parent.mkdir(parents=True, exist_ok=True)
    predictions.to_csv(output, index=False)
    print(f"📁 Wrote {len(predictions)} predictions to {output}")

    if prediction.truth is not None:
        print(json.dumps(prediction.score(), indent=2))
    return predictions


COMMANDS = {
    "benchmark": run_benchmark,
    "train": run_train,
    "predict": run_predict,
}


def create_cli() -> argparse.ArgumentParser:
    """Create command-line interface."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Configuration file path",
    )
    common.add_argument("--output-dir", type=str, help="Override output directory")
    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing",
    )
    common.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    common.add_argument("--quiet", "-q", action="store_true", help="Hide progress bars")

    parser = argparse.ArgumentParser(
        prog="pipegraph",
        description="pipegraph - preprocessing graphs, learners and benchmarks",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    bench = subparsers.add_parser("benchmark", parents=[common], help="Benchmark configured learners")
    bench.add_argument("data", type=str, help="CSV dataset")
    bench.add_argument("--target", "-t", type=str, help="Target column (overrides config)")
    bench.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    train = subparsers.add_parser("train", parents=[common], help="Train and save a learner")
    train.add_argument("data", type=str, help="CSV dataset")
    train.add_argument("--target", "-t", type=str, help="Target column (overrides config)")
    train.add_argument("--learner", "-l", type=str, help="Id of the configured learner to train")
    train.add_argument("--model", "-m", type=str, help="Where to save the trained learner")

    predict = subparsers.add_parser("predict", parents=[common], help="Predict with a saved learner")
    predict.add_argument("model", type=str, help="Saved learner (.joblib)")
    predict.add_argument("data", type=str, help="CSV dataset")
    predict.add_argument("--target", "-t", type=str, help="Target column, used for scoring if present")
    predict.add_argument("--output", "-o", type=str, help="Predictions CSV path")

    return parser


def _describe_dry_run(args: argparse.Namespace, config: PipelineConfig) -> List[str]:
    experiment = config.experiment
    if args.command == "predict":
        return [
            f"1. Load learner from {args.model}",
            f"2. Predict {args.data}",
            f"3. Write predictions (output={args.output or config.output_dir / 'predictions.csv'})",
        ]

    learner_ids = [build_learner(learner_config).id for learner_config in experiment.learners]
    steps = [f"1. Load {args.data} (target={args.target or experiment.target})"]
    if args.command == "benchmark":
        steps.append(
            f"2. Resample learners {learner_ids} with {experiment.resampling.key.value} "
            f"(seed={experiment.seed})"
        )
        steps.append(f"3. Aggregate measures {[m.value for m in experiment.measures]}")
    else:
        steps.append(f"2. Train learner '{args.learner or learner_ids[0]}'")
        steps.append("3. Save trained learner with joblib")
    return steps


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = create_cli()
    args = parser.parse_args(argv)

    # Set environment overrides
    if args.output_dir:
        os.environ["PIPEGRAPH_OUTPUT_DIR"] = args.output_dir

    state = RunState()
    try:
        config = PipelineConfig(args.config)
        _setup_logging(config, args.verbose)

        if args.dry_run:
            print("Dry run - would execute the following steps:")
            for line in _describe_dry_run(args, config):
                print(line)
            return

        COMMANDS[args.command](args, config, state)

        state.end_time = datetime.now()
        state.current_step = "completed"
        summary = state.get_summary()
        print(f"\n🎉 {args.command} completed successfully!")
        print(f"⏱️  Execution time: {summary['execution_time_seconds']:.1f} seconds")
        print(f"💾 Memory peak: {summary['memory_peak_mb']:.1f} MB")

        if args.verbose:
            print("\n📋 Detailed Results:")
            print(json.dumps(summary, indent=2))

    except KeyboardInterrupt:
        print("\n⏹️  Run interrupted by user")
        sys.exit(1)
    except Exception as e:
        state.add_error(e, state.current_step)
        logger.error(f"{args.command} failed in step {state.current_step}: {e}")
        print(f"\n💥 {args.command} error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
