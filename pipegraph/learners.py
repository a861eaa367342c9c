"""
Learners: scikit-learn estimators behind a common train/predict contract.

``Learner`` wraps a single estimator selected by ``LearnerKey``;
``GraphLearner`` combines a preprocessing Graph with a terminal learner and
exposes the same contract, so resampling, benchmarking and tuning code never
needs to know whether preprocessing is involved.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, NamedTuple, Optional, Union

import numpy as np
import pandas as pd
from sklearn.dummy import DummyClassifier, DummyRegressor
from sklearn.ensemble import (
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    HistGradientBoostingClassifier,
    HistGradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.linear_model import LinearRegression, LogisticRegression
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from .dataset import Dataset
from .errors import SchemaMismatchError, UntrainedError
from .graph import Graph, GraphItem, as_graph
from .prediction import Prediction
from .schema import ColumnType, LearnerKey, TaskType

logger = logging.getLogger(__name__)

PREDICT_TYPES = ("response", "prob")


class LearnerSpec(NamedTuple):
    """How to build an estimator and what data it can handle."""

    factory: Callable[..., Any]
    supports_missing: bool
    featureless: bool = False


def _featureless_classifier(**params):
    return DummyClassifier(**{"strategy": "prior", **params})


def _featureless_regressor(**params):
    return DummyRegressor(**{"strategy": "mean", **params})


def _logistic_regression(**params):
    return LogisticRegression(**{"max_iter": 1000, **params})


LEARNER_REGISTRY: Dict[LearnerKey, LearnerSpec] = {
    LearnerKey.CLASSIF_FEATURELESS: LearnerSpec(_featureless_classifier, True, True),
    LearnerKey.CLASSIF_RPART: LearnerSpec(DecisionTreeClassifier, False),
    LearnerKey.CLASSIF_RANGER: LearnerSpec(RandomForestClassifier, False),
    LearnerKey.CLASSIF_LOG_REG: LearnerSpec(_logistic_regression, False),
    LearnerKey.CLASSIF_GBM: LearnerSpec(GradientBoostingClassifier, False),
    LearnerKey.CLASSIF_HIST_GBM: LearnerSpec(HistGradientBoostingClassifier, True),
    LearnerKey.REGR_FEATURELESS: LearnerSpec(_featureless_regressor, True, True),
    LearnerKey.REGR_RPART: LearnerSpec(DecisionTreeRegressor, False),
    LearnerKey.REGR_RANGER: LearnerSpec(RandomForestRegressor, False),
    LearnerKey.REGR_LM: LearnerSpec(LinearRegression, False),
    LearnerKey.REGR_GBM: LearnerSpec(GradientBoostingRegressor, False),
    LearnerKey.REGR_HIST_GBM: LearnerSpec(HistGradientBoostingRegressor, True),
}


class BaseLearner(ABC):
    """Common contract of everything that can be trained and used for prediction."""

    id: str
    task_type: TaskType
    # Feature types seen by ``train`` (see Dataset.feature_info); None until trained
    feature_info: Optional[Dict[str, Dict[str, Any]]] = None

    @property
    @abstractmethod
    def predict_type(self) -> str:
        """Either 'response' or 'prob'."""

    @property
    @abstractmethod
    def is_trained(self) -> bool:
        """Whether ``train`` completed since construction or the last reset."""

    @abstractmethod
    def train(self, dataset: Dataset) -> "BaseLearner":
        """Learn from ``dataset``, discarding anything learned before."""

    @abstractmethod
    def predict(self, dataset: Dataset) -> Prediction:
        """Predict every row of ``dataset``; fails before training."""

    @abstractmethod
    def reset(self) -> None:
        """Discard learned state."""

    @abstractmethod
    def get_params(self) -> Dict[str, Any]:
        """Hyperparameters by name."""

    @abstractmethod
    def set_params(self, **params) -> "BaseLearner":
        """Update hyperparameters; learned state is discarded."""

    def clone(self) -> "BaseLearner":
        """Untrained deep copy with the same configuration."""
        cloned = copy.deepcopy(self)
        cloned.reset()
        return cloned

    def _check_task(self, dataset: Dataset) -> None:
        if dataset.task_type is not None and dataset.task_type != self.task_type:
            raise SchemaMismatchError(
                f"Learner '{self.id}' is for {self.task_type.value} tasks, "
                f"dataset '{dataset.id}' is {dataset.task_type.value}"
            )

    def __repr__(self) -> str:
        status = "trained" if self.is_trained else "untrained"
        return f"{type(self).__name__}(id={self.id!r}, {status})"


class Learner(BaseLearner):
    """A scikit-learn estimator trained on the numeric features of a dataset."""

    def __init__(
        self,
        key: Union[LearnerKey, str],
        id: Optional[str] = None,
        predict_type: str = "response",
        **params,
    ):
        self.key = LearnerKey(key)
        self.id = id or self.key.value
        self.task_type = self.key.task_type
        self.params = dict(params)

        if predict_type not in PREDICT_TYPES:
            raise ValueError(f"predict_type must be one of {PREDICT_TYPES}")
        if predict_type == "prob" and self.task_type != TaskType.CLASSIF:
            raise ValueError("Probability predictions are only available for classification")
        self._predict_type = predict_type

        self.model = None
        self.feature_names = None
        self.feature_info = None
        self.class_names = None

    @property
    def spec(self) -> LearnerSpec:
        return LEARNER_REGISTRY[self.key]

    @property
    def predict_type(self) -> str:
        return self._predict_type

    @predict_type.setter
    def predict_type(self, value: str) -> None:
        if value not in PREDICT_TYPES:
            raise ValueError(f"predict_type must be one of {PREDICT_TYPES}")
        self._predict_type = value

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    def reset(self) -> None:
        self.model = None
        self.feature_names = None
        self.feature_info = None
        self.class_names = None

    def _check_features(self, dataset: Dataset) -> None:
        if self.spec.featureless:
            return

        unsupported = [name for name, kind in dataset.feature_types.items() if kind != ColumnType.NUMERIC]
        if unsupported:
            raise SchemaMismatchError(
                f"Learner '{self.id}' only supports numeric features, got non-numeric columns {unsupported}",
                column=unsupported[0],
            )
        if not self.spec.supports_missing and dataset.has_missing():
            missing = [name for name, count in dataset.missing_counts().items() if count]
            raise SchemaMismatchError(
                f"Learner '{self.id}' does not support missing values (columns {missing})",
                column=missing[0],
            )

    def _matrix(self, dataset: Dataset, names) -> np.ndarray:
        if self.spec.featureless:
            return np.zeros((dataset.nrow, 1))
        return dataset.features(names).to_numpy(dtype=float)

    def train(self, dataset: Dataset) -> "Learner":
        self.reset()
        if dataset.target is None:
            raise SchemaMismatchError(f"Learner '{self.id}' needs a dataset with a target column")
        self._check_task(dataset)
        self._check_features(dataset)

        X = self._matrix(dataset, dataset.feature_names)
        y = dataset.target_values().to_numpy()

        estimator = self.spec.factory(**self.params)
        estimator.fit(X, y)

        self.model = estimator
        self.feature_names = dataset.feature_names
        self.feature_info = dataset.feature_info()
        if self.task_type == TaskType.CLASSIF:
            self.class_names = list(estimator.classes_)

        logger.info(f"Trained learner '{self.id}' on {dataset.nrow} rows and {len(self.feature_names)} features")
        return self

    def predict(self, dataset: Dataset) -> Prediction:
        if not self.is_trained:
            raise UntrainedError(f"Learner '{self.id}' must be trained before predict")
        self._check_task(dataset)

        if not self.spec.featureless:
            dataset = dataset.conform(self.feature_info)
            dataset.require_columns(self.feature_names, {ColumnType.NUMERIC})
            if not self.spec.supports_missing and dataset.features(self.feature_names).isna().to_numpy().any():
                raise SchemaMismatchError(f"Learner '{self.id}' does not support missing values")

        X = self._matrix(dataset, self.feature_names)
        response = self.model.predict(X)

        prob = None
        if self.predict_type == "prob":
            prob = pd.DataFrame(self.model.predict_proba(X), columns=self.class_names, index=dataset.row_ids)

        truth = dataset.target_values().to_numpy() if dataset.has_target_values() else None
        return Prediction(self.task_type, dataset.row_ids, response, truth=truth, prob=prob)

    def get_params(self) -> Dict[str, Any]:
        """Estimator hyperparameters, scikit-learn defaults included."""
        return {**self.spec.factory().get_params(), **self.params}

    def set_params(self, **params) -> "Learner":
        unknown = sorted(set(params) - set(self.get_params()))
        if unknown:
            raise ValueError(f"Unknown parameters for learner '{self.id}': {unknown}")
        self.params.update(params)
        self.reset()
        return self

    @property
    def importance(self) -> Optional[pd.Series]:
        """Feature importances of tree-based estimators, largest first."""
        if not self.is_trained or not hasattr(self.model, "feature_importances_"):
            return None
        scores = pd.Series(self.model.feature_importances_, index=self.feature_names)
        return scores.sort_values(ascending=False)


class GraphLearner(BaseLearner):
    """
    A preprocessing Graph followed by a terminal learner.

    Training fits the graph on the training data and the learner on the
    graph's output. Prediction applies the fitted graph to new data and lets
    the learner predict the result. Retraining discards every operator's
    state and the learner's model before learning again.
    """

    def __init__(self, graph: GraphItem, learner: BaseLearner, id: Optional[str] = None):
        # Own untrained copies; the graph and learner passed in stay independent
        self.graph: Graph = as_graph(graph).clone()
        self.learner = learner.clone()
        self.task_type = learner.task_type
        self.id = id or ".".join(self.graph.ids + [learner.id])
        self._trained = False
        self.feature_info = None

    @property
    def predict_type(self) -> str:
        return self.learner.predict_type

    @predict_type.setter
    def predict_type(self, value: str) -> None:
        self.learner.predict_type = value

    @property
    def is_trained(self) -> bool:
        return self._trained and self.graph.is_trained and self.learner.is_trained

    def reset(self) -> None:
        self.graph.reset()
        self.learner.reset()
        self._trained = False
        self.feature_info = None

    def train(self, dataset: Dataset) -> "GraphLearner":
        if dataset.target is None:
            raise SchemaMismatchError(f"Learner '{self.id}' needs a dataset with a target column")
        self._check_task(dataset)
        self.reset()

        try:
            transformed = self.graph.fit(dataset)
            self.learner.train(transformed)
        except Exception:
            self.reset()
            raise

        self._trained = True
        self.feature_info = dataset.feature_info()
        logger.info(f"Trained graph learner '{self.id}' on {dataset.nrow} rows")
        return self

    def predict(self, dataset: Dataset) -> Prediction:
        if not self.is_trained:
            raise UntrainedError(f"Learner '{self.id}' must be trained before predict")

        dataset = dataset.conform(self.feature_info)
        transformed = self.graph.apply(dataset)
        prediction = self.learner.predict(transformed)

        if not prediction.row_ids.equals(dataset.row_ids):
            raise SchemaMismatchError(f"Learner '{self.id}' produced predictions that are not row-aligned")
        return prediction

    def get_params(self) -> Dict[str, Any]:
        params = self.graph.get_params()
        for name, value in self.learner.get_params().items():
            params[f"{self.learner.id}.{name}"] = value
        return params

    def set_params(self, **params) -> "GraphLearner":
        prefix = f"{self.learner.id}."
        learner_params = {name[len(prefix):]: value for name, value in params.items() if name.startswith(prefix)}
        graph_params = {name: value for name, value in params.items() if not name.startswith(prefix)}

        if learner_params:
            self.learner.set_params(**learner_params)
        if graph_params:
            self.graph.set_params(**graph_params)
        self.reset()
        return self

    @property
    def transformed_features(self):
        """Feature names the terminal learner was trained on."""
        if not self.is_trained:
            raise UntrainedError(f"Learner '{self.id}' must be trained first")
        return list(getattr(self.learner, "feature_names", None) or [])
