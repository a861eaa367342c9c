"""
Benchmarking several learners on several datasets.
"""

import copy
import logging
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Union

import pandas as pd

from .dataset import Dataset
from .learners import BaseLearner
from .resampling import Resampling, ResampleResult, resample
from .schema import MeasureKey

logger = logging.getLogger(__name__)


class BenchmarkDesign(NamedTuple):
    """One cell of a benchmark: a learner evaluated on a dataset with fixed splits."""

    dataset: Dataset
    learner: BaseLearner
    resampling: Resampling


def benchmark_grid(
    datasets: Sequence[Dataset],
    learners: Sequence[BaseLearner],
    resamplings: Sequence[Resampling],
    seed: Optional[int] = None,
) -> List[BenchmarkDesign]:
    """
    Full cross product of datasets, learners and resamplings.

    Each resampling is instantiated once per dataset and that instance is
    shared by every learner, so all learners are compared on identical splits.
    """
    if not datasets or not learners or not resamplings:
        raise ValueError("benchmark_grid needs at least one dataset, learner and resampling")

    design = []
    for dataset in datasets:
        for resampling in resamplings:
            instance = copy.deepcopy(resampling).instantiate(dataset, seed)
            for learner in learners:
                design.append(BenchmarkDesign(dataset, learner, instance))

    logger.info(
        f"Benchmark grid: {len(datasets)} datasets x {len(learners)} learners x "
        f"{len(resamplings)} resamplings = {len(design)} experiments"
    )
    return design


class BenchmarkResult:
    """Collection of resample results from a benchmark run."""

    def __init__(self, results: List[ResampleResult]):
        self.results = results

    def score(self, measures: Optional[Iterable[Union[MeasureKey, str]]] = None) -> pd.DataFrame:
        """Per-iteration scores of every experiment."""
        measures = list(measures) if measures is not None else None
        frames = []
        for number, result in enumerate(self.results):
            frame = result.score(measures)
            frame.insert(0, "experiment", number)
            frame.insert(1, "dataset", result.dataset_id)
            frame.insert(2, "learner", result.learner_id)
            frame.insert(3, "resampling", result.resampling_id)
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)

    def aggregate(self, measures: Optional[Iterable[Union[MeasureKey, str]]] = None) -> pd.DataFrame:
        """One row per experiment with the mean score of each measure."""
        measures = list(measures) if measures is not None else None
        rows = []
        for number, result in enumerate(self.results):
            row: Dict[str, object] = {
                "experiment": number,
                "dataset": result.dataset_id,
                "learner": result.learner_id,
                "resampling": result.resampling_id,
                "iters": result.iters,
            }
            row.update(result.aggregate(measures))
            rows.append(row)
        return pd.DataFrame(rows)

    def __len__(self) -> int:
        return len(self.results)

    def __repr__(self) -> str:
        return f"BenchmarkResult(experiments={len(self)})"


def benchmark(design: Sequence[BenchmarkDesign], store_models: bool = False, progress: bool = True) -> BenchmarkResult:
    """Run every experiment of ``design``; failures propagate."""
    results = []
    for number, (dataset, learner, resampling) in enumerate(design, start=1):
        logger.info(f"Benchmark experiment {number}/{len(design)}: '{learner.id}' on '{dataset.id}'")
        results.append(resample(dataset, learner, resampling, store_models=store_models, progress=progress))
    return BenchmarkResult(results)
