"""
Resampling strategies and the resample loop.

A resampling is instantiated once per dataset, which fixes its
(train, test) row-position splits. Learners evaluated against the same
instantiated resampling therefore see identical splits.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.model_selection import (
    KFold,
    RepeatedKFold,
    RepeatedStratifiedKFold,
    ShuffleSplit,
    StratifiedKFold,
    StratifiedShuffleSplit,
    train_test_split,
)
from tqdm import tqdm

from .dataset import Dataset
from .learners import BaseLearner
from .prediction import Prediction
from .schema import MeasureKey, ResamplingConfig, ResamplingKey, TaskType

logger = logging.getLogger(__name__)

Split = Tuple[np.ndarray, np.ndarray]


class Resampling(ABC):
    """Base class for resampling strategies."""

    key: Optional[ResamplingKey] = None

    def __init__(self, stratify: bool = False):
        self.stratify = stratify
        self._splits: Optional[List[Split]] = None
        self.dataset_id: Optional[str] = None

    @property
    def id(self) -> str:
        return self.key.value if self.key else "custom"

    @property
    @abstractmethod
    def iters(self) -> int:
        """Number of (train, test) splits."""

    @property
    def is_instantiated(self) -> bool:
        return self._splits is not None

    def instantiate(self, dataset: Dataset, seed: Optional[int] = None) -> "Resampling":
        """Fix the splits for ``dataset``; a repeated call replaces them."""
        strata = self._strata(dataset)
        self._splits = [
            (np.asarray(train, dtype=int), np.asarray(test, dtype=int))
            for train, test in self._split(dataset.nrow, strata, seed)
        ]
        self.dataset_id = dataset.id
        logger.debug(f"Instantiated {self.id} with {len(self._splits)} splits on dataset '{dataset.id}'")
        return self

    def _strata(self, dataset: Dataset) -> Optional[np.ndarray]:
        if not self.stratify:
            return None
        if dataset.task_type != TaskType.CLASSIF:
            raise ValueError("Stratification needs a classification dataset")
        return dataset.target_values().astype(str).to_numpy()

    @abstractmethod
    def _split(self, n: int, strata: Optional[np.ndarray], seed: Optional[int]) -> Iterable[Split]:
        """Generate (train, test) row positions."""

    def _check_instantiated(self) -> None:
        if not self.is_instantiated:
            raise RuntimeError(f"Resampling '{self.id}' must be instantiated first")

    def train_set(self, i: int) -> np.ndarray:
        self._check_instantiated()
        return self._splits[i][0].copy()

    def test_set(self, i: int) -> np.ndarray:
        self._check_instantiated()
        return self._splits[i][1].copy()

    def splits(self) -> List[Split]:
        self._check_instantiated()
        return [(train.copy(), test.copy()) for train, test in self._splits]

    def __repr__(self) -> str:
        status = "instantiated" if self.is_instantiated else "not instantiated"
        return f"{type(self).__name__}(iters={self.iters}, {status})"


class Holdout(Resampling):
    key = ResamplingKey.HOLDOUT

    def __init__(self, ratio: float = 2 / 3, stratify: bool = False):
        super().__init__(stratify)
        if not 0 < ratio < 1:
            raise ValueError("ratio must be between 0 and 1")
        self.ratio = ratio

    @property
    def iters(self) -> int:
        return 1

    def _split(self, n, strata, seed):
        train, test = train_test_split(np.arange(n), train_size=self.ratio, random_state=seed, stratify=strata)
        return [(np.sort(train), np.sort(test))]


class CrossValidation(Resampling):
    key = ResamplingKey.CV

    def __init__(self, folds: int = 3, stratify: bool = False):
        super().__init__(stratify)
        if folds < 2:
            raise ValueError("Cross-validation needs at least 2 folds")
        self.folds = folds

    @property
    def iters(self) -> int:
        return self.folds

    def _split(self, n, strata, seed):
        splitter_cls = StratifiedKFold if strata is not None else KFold
        splitter = splitter_cls(n_splits=self.folds, shuffle=True, random_state=seed)
        return splitter.split(np.zeros(n), strata)


class RepeatedCrossValidation(Resampling):
    key = ResamplingKey.REPEATED_CV

    def __init__(self, folds: int = 3, repeats: int = 2, stratify: bool = False):
        super().__init__(stratify)
        if folds < 2 or repeats < 1:
            raise ValueError("Repeated cross-validation needs folds >= 2 and repeats >= 1")
        self.folds = folds
        self.repeats = repeats

    @property
    def iters(self) -> int:
        return self.folds * self.repeats

    def _split(self, n, strata, seed):
        splitter_cls = RepeatedStratifiedKFold if strata is not None else RepeatedKFold
        splitter = splitter_cls(n_splits=self.folds, n_repeats=self.repeats, random_state=seed)
        return splitter.split(np.zeros(n), strata)


class Subsampling(Resampling):
    """Repeated holdout without replacement."""

    key = ResamplingKey.SUBSAMPLING

    def __init__(self, repeats: int = 30, ratio: float = 2 / 3, stratify: bool = False):
        super().__init__(stratify)
        if repeats < 1 or not 0 < ratio < 1:
            raise ValueError("Subsampling needs repeats >= 1 and 0 < ratio < 1")
        self.repeats = repeats
        self.ratio = ratio

    @property
    def iters(self) -> int:
        return self.repeats

    def _split(self, n, strata, seed):
        splitter_cls = StratifiedShuffleSplit if strata is not None else ShuffleSplit
        splitter = splitter_cls(n_splits=self.repeats, train_size=self.ratio, random_state=seed)
        return ((np.sort(train), np.sort(test)) for train, test in splitter.split(np.zeros(n), strata))


class Bootstrap(Resampling):
    """Train on a sample drawn with replacement, test on the out-of-bag rows."""

    key = ResamplingKey.BOOTSTRAP

    def __init__(self, repeats: int = 30, ratio: float = 1.0):
        super().__init__(stratify=False)
        if repeats < 1 or ratio <= 0:
            raise ValueError("Bootstrap needs repeats >= 1 and a positive ratio")
        self.repeats = repeats
        self.ratio = ratio

    @property
    def iters(self) -> int:
        return self.repeats

    def _split(self, n, strata, seed):
        rng = np.random.default_rng(seed)
        size = max(1, int(round(self.ratio * n)))
        for _ in range(self.repeats):
            train = rng.integers(0, n, size=size)
            test = np.setdiff1d(np.arange(n), train)
            yield np.sort(train), test


class Custom(Resampling):
    """User supplied (train, test) row positions."""

    def __init__(self, train_sets: Sequence[Sequence[int]], test_sets: Sequence[Sequence[int]]):
        super().__init__(stratify=False)
        if len(train_sets) != len(test_sets) or not train_sets:
            raise ValueError("Custom resampling needs the same, non-zero number of train and test sets")
        self.train_sets = [list(rows) for rows in train_sets]
        self.test_sets = [list(rows) for rows in test_sets]

    @property
    def iters(self) -> int:
        return len(self.train_sets)

    def _split(self, n, strata, seed):
        for train, test in zip(self.train_sets, self.test_sets):
            if max(train + test, default=-1) >= n:
                raise ValueError(f"Custom split refers to rows beyond the dataset size {n}")
            yield train, test


def make_resampling(config: Union[ResamplingConfig, Dict]) -> Resampling:
    """Build a resampling strategy from its configuration."""
    if isinstance(config, dict):
        config = ResamplingConfig(**config)

    if config.key == ResamplingKey.HOLDOUT:
        return Holdout(config.ratio, stratify=config.stratify)
    if config.key == ResamplingKey.CV:
        return CrossValidation(config.folds, stratify=config.stratify)
    if config.key == ResamplingKey.REPEATED_CV:
        return RepeatedCrossValidation(config.folds, config.repeats, stratify=config.stratify)
    if config.key == ResamplingKey.SUBSAMPLING:
        return Subsampling(config.repeats, config.ratio, stratify=config.stratify)
    return Bootstrap(config.repeats)


class ResampleResult:
    """Predictions of one learner over all iterations of a resampling."""

    def __init__(
        self,
        task_type: TaskType,
        dataset_id: str,
        learner_id: str,
        resampling_id: str,
        predictions: List[Prediction],
        learners: Optional[List[BaseLearner]] = None,
    ):
        self.task_type = task_type
        self.dataset_id = dataset_id
        self.learner_id = learner_id
        self.resampling_id = resampling_id
        self._predictions = predictions
        self.learners = learners or []

    @property
    def iters(self) -> int:
        return len(self._predictions)

    def prediction(self, i: int) -> Prediction:
        return self._predictions[i]

    def predictions(self) -> Prediction:
        """Test-set predictions of all iterations combined."""
        return Prediction.combine(self._predictions)

    def score(self, measures: Optional[Iterable[Union[MeasureKey, str]]] = None) -> pd.DataFrame:
        """One row per iteration with one column per measure."""
        rows = []
        for i, prediction in enumerate(self._predictions):
            rows.append({"iteration": i, **prediction.score(measures)})
        return pd.DataFrame(rows)

    def aggregate(self, measures: Optional[Iterable[Union[MeasureKey, str]]] = None) -> Dict[str, float]:
        """Mean of each measure over the iterations."""
        scores = self.score(measures).drop(columns="iteration")
        return {name: float(value) for name, value in scores.mean().items()}

    def __repr__(self) -> str:
        return (
            f"ResampleResult(dataset={self.dataset_id!r}, learner={self.learner_id!r}, "
            f"resampling={self.resampling_id!r}, iters={self.iters})"
        )


def resample(
    dataset: Dataset,
    learner: BaseLearner,
    resampling: Resampling,
    seed: Optional[int] = None,
    store_models: bool = False,
    progress: bool = True,
) -> ResampleResult:
    """
    Evaluate ``learner`` on every split of ``resampling``.

    The learner passed in is never trained; each iteration works on a fresh
    clone. An uninstantiated resampling is instantiated on ``dataset`` first.

    Args:
        dataset: Data to split
        learner: Learner (or graph learner) to evaluate
        resampling: Strategy providing the splits
        seed: Seed used when the resampling still has to be instantiated
        store_models: Keep the trained clone of every iteration
        progress: Show a tqdm progress bar

    Returns:
        ResampleResult with the test-set prediction of every iteration
    """
    if not resampling.is_instantiated:
        resampling.instantiate(dataset, seed)
    elif resampling.dataset_id != dataset.id:
        logger.warning(f"Resampling was instantiated on '{resampling.dataset_id}', reused on '{dataset.id}'")

    logger.info(f"Resampling learner '{learner.id}' on '{dataset.id}' with {resampling.id} ({resampling.iters} iters)")

    predictions = []
    trained = []
    iterations = tqdm(
        range(resampling.iters),
        desc=f"{learner.id} on {dataset.id}",
        disable=not progress,
        leave=False,
    )
    for i in iterations:
        model = learner.clone()
        model.train(dataset.subset(resampling.train_set(i)))
        predictions.append(model.predict(dataset.subset(resampling.test_set(i))))
        logger.debug(f"Finished resampling iteration {i + 1}/{resampling.iters} for '{learner.id}'")

        if store_models:
            trained.append(model)

    return ResampleResult(
        learner.task_type,
        dataset.id,
        learner.id,
        resampling.id,
        predictions,
        learners=trained,
    )
