"""
Performance measures, keyed by ``MeasureKey`` and computed with sklearn.metrics.
"""

import logging
from typing import Callable, Dict, List, Union

import numpy as np
from sklearn import metrics

from .errors import SchemaMismatchError
from .prediction import Prediction
from .schema import MeasureKey, TaskType

logger = logging.getLogger(__name__)


class Measure:
    """A named scoring function over predictions."""

    def __init__(
        self,
        key: MeasureKey,
        func: Callable[[Prediction], float],
        minimize: bool,
        requires_prob: bool = False,
    ):
        self.key = key
        self.func = func
        self.minimize = minimize
        self.requires_prob = requires_prob

    @property
    def id(self) -> str:
        return self.key.value

    @property
    def task_type(self) -> TaskType:
        return TaskType(self.key.value.split(".", 1)[0])

    def score(self, prediction: Prediction) -> float:
        if prediction.task_type != self.task_type:
            raise ValueError(f"Measure {self.id} cannot score a {prediction.task_type.value} prediction")
        if prediction.truth is None:
            raise SchemaMismatchError(f"Measure {self.id} needs truth values")
        if self.requires_prob and prediction.prob is None:
            raise ValueError(f"Measure {self.id} needs probabilities, use predict_type='prob'")
        return float(self.func(prediction))

    def __reduce__(self):
        # Registered measures hold lambdas; pickle them by key
        return get_measure, (self.key,)

    def __repr__(self) -> str:
        return f"Measure({self.id}, minimize={self.minimize})"


def _auc(prediction: Prediction) -> float:
    classes = prediction.class_names
    if len(classes) == 2:
        positive = (prediction.truth == classes[1]).astype(int)
        return metrics.roc_auc_score(positive, prediction.prob[classes[1]].to_numpy())
    return metrics.roc_auc_score(prediction.truth, prediction.prob.to_numpy(), multi_class="ovr", labels=classes)


def _logloss(prediction: Prediction) -> float:
    return metrics.log_loss(prediction.truth, prediction.prob.to_numpy(), labels=prediction.class_names)


MEASURES: Dict[MeasureKey, Measure] = {
    MeasureKey.CLASSIF_CE: Measure(
        MeasureKey.CLASSIF_CE, lambda p: 1.0 - metrics.accuracy_score(p.truth, p.response), minimize=True
    ),
    MeasureKey.CLASSIF_ACC: Measure(
        MeasureKey.CLASSIF_ACC, lambda p: metrics.accuracy_score(p.truth, p.response), minimize=False
    ),
    MeasureKey.CLASSIF_BACC: Measure(
        MeasureKey.CLASSIF_BACC, lambda p: metrics.balanced_accuracy_score(p.truth, p.response), minimize=False
    ),
    MeasureKey.CLASSIF_AUC: Measure(MeasureKey.CLASSIF_AUC, _auc, minimize=False, requires_prob=True),
    MeasureKey.CLASSIF_LOGLOSS: Measure(MeasureKey.CLASSIF_LOGLOSS, _logloss, minimize=True, requires_prob=True),
    MeasureKey.REGR_MSE: Measure(
        MeasureKey.REGR_MSE, lambda p: metrics.mean_squared_error(p.truth, p.response), minimize=True
    ),
    MeasureKey.REGR_RMSE: Measure(
        MeasureKey.REGR_RMSE, lambda p: np.sqrt(metrics.mean_squared_error(p.truth, p.response)), minimize=True
    ),
    MeasureKey.REGR_MAE: Measure(
        MeasureKey.REGR_MAE, lambda p: metrics.mean_absolute_error(p.truth, p.response), minimize=True
    ),
    MeasureKey.REGR_RSQ: Measure(MeasureKey.REGR_RSQ, lambda p: metrics.r2_score(p.truth, p.response), minimize=False),
}


def get_measure(key: Union[MeasureKey, str, Measure]) -> Measure:
    if isinstance(key, Measure):
        return key
    return MEASURES[MeasureKey(key)]


def default_measures(task_type: TaskType) -> List[MeasureKey]:
    return [MeasureKey.CLASSIF_CE] if TaskType(task_type) == TaskType.CLASSIF else [MeasureKey.REGR_MSE]
