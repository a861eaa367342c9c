"""
Missing value imputation operators.

Imputation values are computed once at fit time from the training data and
reused unchanged for every later apply call.
"""

import logging
from typing import Any, Dict

import pandas as pd

from .operators import ALL_TYPES, Operator, register_operator, replace_columns
from .schema import CATEGORICAL_TYPES, ColumnType, OperatorKey

logger = logging.getLogger(__name__)

MISSING_LEVEL = ".MISSING"


def _fill(dataset, columns, values: Dict[str, Any]):
    """New dataset with missing values of each column replaced by ``values[column]``."""
    frame = dataset.features()

    for name in columns:
        series = frame[name]
        fill_value = values[name]
        if isinstance(series.dtype, pd.CategoricalDtype) and fill_value not in series.cat.categories:
            series = series.cat.add_categories([fill_value])
        frame[name] = series.fillna(fill_value)

    return dataset.with_features(frame)


class _Imputer(Operator):
    """Base class for imputers that replace missing values with a learned value per column."""

    def _impute_value(self, series: pd.Series, kind: ColumnType) -> Any:
        raise NotImplementedError

    def _fit(self, dataset, columns):
        frame = dataset.features(columns)
        values = {name: self._impute_value(frame[name], dataset.column_type(name)) for name in columns}

        missing = {name: int(frame[name].isna().sum()) for name in columns}
        logger.info(f"Operator '{self.id}' learned imputation values for {len(columns)} columns, missing={missing}")
        return {"values": values}

    def _transform(self, dataset, columns, state):
        return _fill(dataset, columns, state["values"])


@register_operator
class ImputeMedian(_Imputer):
    """Replaces missing numeric values with the training median."""

    key = OperatorKey.IMPUTE_MEDIAN
    accepted_types = frozenset({ColumnType.NUMERIC})

    def _impute_value(self, series, kind):
        valid = series.dropna()
        if valid.empty:
            logger.warning(f"Column '{series.name}' is entirely missing, imputing 0")
            return 0.0
        return float(valid.median())


@register_operator
class ImputeMean(_Imputer):
    """Replaces missing numeric values with the training mean."""

    key = OperatorKey.IMPUTE_MEAN
    accepted_types = frozenset({ColumnType.NUMERIC})

    def _impute_value(self, series, kind):
        valid = series.dropna()
        if valid.empty:
            logger.warning(f"Column '{series.name}' is entirely missing, imputing 0")
            return 0.0
        return float(valid.mean())


@register_operator
class ImputeMode(_Imputer):
    """Replaces missing values with the most frequent training value (ties: first in sorted order)."""

    key = OperatorKey.IMPUTE_MODE
    accepted_types = frozenset({ColumnType.NUMERIC}) | CATEGORICAL_TYPES

    def _impute_value(self, series, kind):
        counts = series.value_counts(dropna=True)
        counts = counts[counts > 0]
        if counts.empty:
            logger.warning(f"Column '{series.name}' is entirely missing, nothing to impute from")
            return 0.0 if kind == ColumnType.NUMERIC else MISSING_LEVEL
        top = counts[counts == counts.max()].index.tolist()
        return sorted(top, key=str)[0]


@register_operator
class ImputeConstant(_Imputer):
    """Replaces missing values with a fixed ``constant``."""

    key = OperatorKey.IMPUTE_CONSTANT
    accepted_types = ALL_TYPES
    defaults = {"constant": 0}

    def _impute_value(self, series, kind):
        return self.params["constant"]


@register_operator
class ImputeOutOfRange(_Imputer):
    """
    Out-of-range imputation.

    Numeric columns get a value outside the training range:
    ``min - offset - multiplier * (max - min)`` (or above the maximum when
    ``min`` is False). Factor columns get a new ``.MISSING`` level, which lets
    tree learners separate missing observations.
    """

    key = OperatorKey.IMPUTE_OOR
    accepted_types = frozenset({ColumnType.NUMERIC}) | CATEGORICAL_TYPES
    defaults = {"min": True, "offset": 1.0, "multiplier": 1.0}

    def _validate_params(self) -> None:
        if self.params["offset"] < 0 or self.params["multiplier"] < 0:
            raise ValueError("offset and multiplier must be non-negative")

    def _impute_value(self, series, kind):
        if kind in CATEGORICAL_TYPES:
            return MISSING_LEVEL

        valid = series.dropna()
        if valid.empty:
            return 0.0
        low, high = float(valid.min()), float(valid.max())
        shift = self.params["offset"] + self.params["multiplier"] * (high - low)
        return low - shift if self.params["min"] else high + shift


@register_operator
class MissingIndicator(Operator):
    """
    Emits ``missing_<column>`` 0/1 indicator columns.

    Only the indicator columns (and the target) are returned, so the operator
    is meant to run in a parallel branch next to an imputer and be merged with
    a feature union. With ``which="missing_train"`` indicators are created
    only for columns that had missing values at fit time.
    """

    key = OperatorKey.MISSING_INDICATOR
    defaults = {"which": "missing_train"}

    def _validate_params(self) -> None:
        if self.params["which"] not in ("missing_train", "all"):
            raise ValueError("which must be 'missing_train' or 'all'")

    def _fit(self, dataset, columns):
        if self.params["which"] == "all":
            return {"indicated": list(columns)}
        frame = dataset.features(columns)
        return {"indicated": [name for name in columns if frame[name].isna().any()]}

    def _transform(self, dataset, columns, state):
        frame = dataset.features(state["indicated"])
        indicators = pd.DataFrame(
            {f"missing_{name}": frame[name].isna().astype(float) for name in state["indicated"]},
            index=dataset.row_ids,
        )
        return replace_columns(
            dataset,
            dataset.feature_names,
            indicators,
            {name: ColumnType.NUMERIC for name in indicators.columns},
        )
