"""
Hyperparameter tuning by grid or random search.

Parameter names in a search space are the names a learner reports from
``get_params``; for a GraphLearner these are namespaced as
``<operator_id>.<param>`` and ``<learner_id>.<param>``, so preprocessing and
model parameters are tuned jointly.
"""

import copy
import itertools
import logging
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from .dataset import Dataset
from .errors import UntrainedError
from .learners import BaseLearner
from .measures import Measure, get_measure
from .prediction import Prediction
from .resampling import Resampling, resample
from .schema import MeasureKey, ParamSpec

logger = logging.getLogger(__name__)


class SearchSpace:
    """Named hyperparameter ranges."""

    def __init__(self, params: Dict[str, ParamSpec]):
        if not params:
            raise ValueError("A search space needs at least one parameter")
        self.params = dict(params)

    @property
    def names(self) -> List[str]:
        return list(self.params)

    def grid(self, resolution: int) -> List[Dict[str, Any]]:
        """Cross product of every parameter's grid points."""
        if resolution < 1:
            raise ValueError("resolution must be positive")
        axes = [self.params[name].grid(resolution) for name in self.names]
        return [dict(zip(self.names, values)) for values in itertools.product(*axes)]

    def sample(self, rng: np.random.Generator) -> Dict[str, Any]:
        return {name: param.sample(rng) for name, param in self.params.items()}

    def __len__(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        return f"SearchSpace({self.names})"


class GridSearch:
    """Evaluate grid points in order (shuffled when a seed is given)."""

    def __init__(self, resolution: int = 5, seed: Optional[int] = None):
        self.resolution = resolution
        self.seed = seed

    def propose(self, search_space: SearchSpace, n_evals: Optional[int] = None) -> List[Dict[str, Any]]:
        points = search_space.grid(self.resolution)
        if self.seed is not None:
            order = np.random.default_rng(self.seed).permutation(len(points))
            points = [points[i] for i in order]
        return points[:n_evals] if n_evals is not None else points


class RandomSearch:
    """Sample configurations uniformly (log-uniformly for log-scale ranges)."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed

    def propose(self, search_space: SearchSpace, n_evals: Optional[int] = None) -> List[Dict[str, Any]]:
        if n_evals is None:
            raise ValueError("Random search needs an evaluation budget (n_evals)")
        rng = np.random.default_rng(self.seed)
        return [search_space.sample(rng) for _ in range(n_evals)]


Tuner = Union[GridSearch, RandomSearch]


class TuningResult:
    """Outcome of a tuning run: the best configuration and the full archive."""

    def __init__(self, configs: List[Dict[str, Any]], scores: List[float], measure: Measure):
        self.measure = measure
        self.archive = pd.DataFrame([{**config, measure.id: score} for config, score in zip(configs, scores)])

        scores = self.archive[measure.id]
        best = int(scores.idxmin() if measure.minimize else scores.idxmax())
        self.best_params: Dict[str, Any] = dict(configs[best])
        self.best_score = float(scores.loc[best])

    def __repr__(self) -> str:
        return f"TuningResult(best_params={self.best_params}, {self.measure.id}={self.best_score:.4f})"


def tune(
    learner: BaseLearner,
    dataset: Dataset,
    resampling: Resampling,
    measure: Union[MeasureKey, str, Measure],
    search_space: SearchSpace,
    tuner: Tuner,
    n_evals: Optional[int] = None,
    seed: Optional[int] = None,
    progress: bool = True,
) -> TuningResult:
    """
    Evaluate configurations proposed by ``tuner`` and keep the best one.

    Every configuration is resampled on the same splits. ``learner`` itself
    is left untouched.
    """
    measure = get_measure(measure)
    if measure.task_type != learner.task_type:
        raise ValueError(f"Measure {measure.id} does not fit learner '{learner.id}'")

    unknown = [name for name in search_space.names if name not in learner.get_params()]
    if unknown:
        raise ValueError(f"Search space names unknown parameters of '{learner.id}': {unknown}")

    if not resampling.is_instantiated:
        resampling = copy.deepcopy(resampling).instantiate(dataset, seed)

    configs = tuner.propose(search_space, n_evals)
    if not configs:
        raise ValueError("Tuner proposed no configurations")
    logger.info(f"Tuning '{learner.id}' over {len(configs)} configurations, measure {measure.id}")

    scores = []
    for i, config in enumerate(tqdm(configs, desc=f"Tuning {learner.id}", disable=not progress, leave=False)):
        candidate = learner.clone()
        candidate.set_params(**config)
        result = resample(dataset, candidate, resampling, progress=False)
        score = result.aggregate([measure.key])[measure.id]
        scores.append(score)
        logger.debug(f"Evaluation {i + 1}/{len(configs)}: {config} -> {measure.id}={score:.4f}")

    tuning_result = TuningResult(configs, scores, measure)
    logger.info(f"Best configuration for '{learner.id}': {tuning_result.best_params} ({tuning_result.best_score:.4f})")
    return tuning_result


class AutoTuner(BaseLearner):
    """
    A learner that tunes itself on its training data.

    ``train`` runs ``tune`` on the training data, then trains a clone of the
    wrapped learner with the best configuration on all of it. Resampling an
    AutoTuner therefore gives a nested resampling estimate.
    """

    def __init__(
        self,
        learner: BaseLearner,
        resampling: Resampling,
        measure: Union[MeasureKey, str, Measure],
        search_space: SearchSpace,
        tuner: Tuner,
        n_evals: Optional[int] = None,
        id: Optional[str] = None,
        seed: Optional[int] = None,
    ):
        self.learner = learner
        self.resampling = resampling
        self.measure = get_measure(measure)
        self.search_space = search_space
        self.tuner = tuner
        self.n_evals = n_evals
        self.seed = seed
        self.task_type = learner.task_type
        self.id = id or f"{learner.id}.tuned"

        self.tuning_result: Optional[TuningResult] = None
        self.model: Optional[BaseLearner] = None

    @property
    def predict_type(self) -> str:
        return self.learner.predict_type

    @property
    def is_trained(self) -> bool:
        return self.model is not None and self.model.is_trained

    @property
    def feature_info(self) -> Optional[Dict[str, Dict[str, Any]]]:
        return self.model.feature_info if self.model is not None else None

    def reset(self) -> None:
        self.tuning_result = None
        self.model = None

    def train(self, dataset: Dataset) -> "AutoTuner":
        self.reset()
        self._check_task(dataset)

        # Inner splits are drawn from this training set only
        inner = copy.deepcopy(self.resampling)
        inner.instantiate(dataset, self.seed)

        result = tune(
            self.learner,
            dataset,
            inner,
            self.measure,
            self.search_space,
            self.tuner,
            n_evals=self.n_evals,
            progress=False,
        )
        model = self.learner.clone()
        model.set_params(**result.best_params)
        model.train(dataset)

        self.tuning_result = result
        self.model = model
        return self

    def predict(self, dataset: Dataset) -> Prediction:
        if not self.is_trained:
            raise UntrainedError(f"Learner '{self.id}' must be trained before predict")
        return self.model.predict(dataset)

    def get_params(self) -> Dict[str, Any]:
        return self.learner.get_params()

    def set_params(self, **params) -> "AutoTuner":
        self.learner.set_params(**params)
        self.reset()
        return self
