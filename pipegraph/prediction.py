"""
Prediction containers returned by learners.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .errors import SchemaMismatchError
from .schema import MeasureKey, TaskType

logger = logging.getLogger(__name__)


class Prediction:
    """Predictions aligned row-for-row with the dataset they were made for."""

    def __init__(
        self,
        task_type: TaskType,
        row_ids: Iterable[Any],
        response: Iterable[Any],
        truth: Optional[Iterable[Any]] = None,
        prob: Optional[pd.DataFrame] = None,
    ):
        self.task_type = TaskType(task_type)
        self.row_ids = pd.Index(row_ids)
        self.response = np.asarray(response)
        self.truth = np.asarray(truth) if truth is not None else None
        self.prob = prob

        if len(self.response) != len(self.row_ids):
            raise SchemaMismatchError("Response length does not match the number of rows")
        if self.truth is not None and len(self.truth) != len(self.row_ids):
            raise SchemaMismatchError("Truth length does not match the number of rows")
        if self.prob is not None and len(self.prob) != len(self.row_ids):
            raise SchemaMismatchError("Probability table length does not match the number of rows")

    def __len__(self) -> int:
        return len(self.row_ids)

    @property
    def class_names(self) -> List[Any]:
        return list(self.prob.columns) if self.prob is not None else []

    def score(self, measures: Optional[Iterable[Union[MeasureKey, str]]] = None) -> Dict[str, float]:
        """Score this prediction with the given measures (the task default if omitted)."""
        from .measures import default_measures, get_measure

        keys = list(measures) if measures is not None else default_measures(self.task_type)
        return {get_measure(key).id: get_measure(key).score(self) for key in keys}

    def confusion(self) -> pd.DataFrame:
        """Confusion matrix with responses as rows and truth as columns."""
        if self.task_type != TaskType.CLASSIF:
            raise ValueError("Confusion matrices are only defined for classification")
        if self.truth is None:
            raise SchemaMismatchError("Prediction has no truth values")
        return pd.crosstab(
            pd.Series(self.response, name="response"),
            pd.Series(self.truth, name="truth"),
        )

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({"row_id": self.row_ids, "response": self.response})
        if self.truth is not None:
            frame.insert(1, "truth", self.truth)
        if self.prob is not None:
            for name in self.prob.columns:
                frame[f"prob.{name}"] = self.prob[name].to_numpy()
        return frame

    @classmethod
    def combine(cls, predictions: List["Prediction"]) -> "Prediction":
        """Concatenate predictions, e.g. from all test sets of a resampling."""
        if not predictions:
            raise ValueError("Nothing to combine")

        task_type = predictions[0].task_type
        has_truth = all(p.truth is not None for p in predictions)
        has_prob = all(p.prob is not None for p in predictions)

        return cls(
            task_type,
            row_ids=np.concatenate([np.asarray(p.row_ids) for p in predictions]),
            response=np.concatenate([p.response for p in predictions]),
            truth=np.concatenate([p.truth for p in predictions]) if has_truth else None,
            prob=pd.concat([p.prob for p in predictions], ignore_index=True) if has_prob else None,
        )

    def __repr__(self) -> str:
        return f"Prediction(task_type={self.task_type.value}, rows={len(self)})"
