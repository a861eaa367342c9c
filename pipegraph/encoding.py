"""
Categorical encoding operators.

Encoders learn the levels of each factor column at fit time. At apply time a
level that was not seen during fit is either mapped to a fallback encoding
(the default) or rejected with ``UnseenLevelError``, depending on the
``unseen`` parameter.
"""

import logging
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from .errors import SchemaMismatchError, UnseenLevelError
from .operators import Operator, register_operator, replace_columns
from .schema import CATEGORICAL_TYPES, ColumnType, OperatorKey, TaskType

logger = logging.getLogger(__name__)

UNSEEN_POLICIES = ("fallback", "error")


def _check_unseen(operator: Operator, column: str, values: pd.Series, levels: List[Any]) -> pd.Series:
    """Boolean mask of non-missing values that are not among the fitted levels."""
    unseen = values.notna() & ~values.isin(levels)

    if unseen.any():
        examples = sorted(set(values[unseen].astype(str)))[:5]
        if operator.params["unseen"] == "error":
            raise UnseenLevelError(
                f"Column '{column}' has levels not seen during fit: {examples}",
                column=column,
            )
        logger.debug(f"Operator '{operator.id}' maps unseen levels of '{column}' to the fallback: {examples}")
    return unseen


class _CategoricalOperator(Operator):
    """Shared parameter checks for operators acting on factor columns."""

    accepted_types = CATEGORICAL_TYPES
    defaults = {"unseen": "fallback"}

    def _validate_params(self) -> None:
        if self.params["unseen"] not in UNSEEN_POLICIES:
            raise ValueError(f"unseen must be one of {UNSEEN_POLICIES}, got {self.params['unseen']!r}")


class _IndicatorEncoder(_CategoricalOperator):
    """Encodes each factor column as numeric 0/1 indicator columns."""

    def _indicator_levels(self, levels: List[Any]) -> List[Any]:
        raise NotImplementedError

    def _fit(self, dataset, columns):
        levels = {name: dataset.levels(name) for name in columns}
        indicators = {name: self._indicator_levels(column_levels) for name, column_levels in levels.items()}
        return {"levels": levels, "indicators": indicators}

    def _transform(self, dataset, columns, state):
        frame = dataset.features(columns)
        encoded = {}

        for name in columns:
            values = frame[name].astype(object)
            unseen = _check_unseen(self, name, values, state["levels"][name])
            missing = values.isna()

            for level in state["indicators"][name]:
                indicator = (values == level).astype(float)
                # Missing values stay missing; unseen levels fall back to all zeros
                indicator[missing] = np.nan
                indicator[unseen] = 0.0
                encoded[f"{name}.{level}"] = indicator

        added = pd.DataFrame(encoded, index=dataset.row_ids)
        return replace_columns(dataset, columns, added, {name: ColumnType.NUMERIC for name in added.columns})


@register_operator
class OneHotEncoder(_IndicatorEncoder):
    """One indicator column per level seen at fit time."""

    key = OperatorKey.ENCODE_ONEHOT

    def _indicator_levels(self, levels):
        return list(levels)


@register_operator
class TreatmentEncoder(_IndicatorEncoder):
    """
    Treatment (dummy) encoding against a baseline level.

    The baseline is the first fitted level (category order for ordered
    factors, sorted order otherwise) unless ``baseline`` maps a column to a
    specific level. Baseline rows and unseen levels encode as all zeros.
    """

    key = OperatorKey.ENCODE_TREATMENT
    defaults = {"unseen": "fallback", "baseline": {}}

    def _fit(self, dataset, columns):
        levels = {name: dataset.levels(name) for name in columns}
        baselines = {}

        for name, column_levels in levels.items():
            if name in self.params["baseline"]:
                baseline = self.params["baseline"][name]
                if baseline not in column_levels:
                    raise SchemaMismatchError(f"Baseline level {baseline!r} not observed in column '{name}'", name)
            else:
                baseline = column_levels[0] if column_levels else None
            baselines[name] = baseline

        indicators = {
            name: [level for level in column_levels if level != baselines[name]]
            for name, column_levels in levels.items()
        }
        return {"levels": levels, "indicators": indicators, "baselines": baselines}


@register_operator
class ImpactEncoder(_CategoricalOperator):
    """
    Impact (target) encoding.

    Classification: for every class, the smoothed log-odds of the class given
    the level minus the log-odds of the class overall. Regression: the
    smoothed mean target given the level minus the overall mean. Unseen levels
    encode as 0 (no impact).
    """

    key = OperatorKey.ENCODE_IMPACT
    defaults = {"unseen": "fallback", "smoothing": 1e-4}

    def _validate_params(self) -> None:
        super()._validate_params()
        if self.params["smoothing"] < 0:
            raise ValueError("smoothing must be non-negative")

    def _fit(self, dataset, columns):
        if dataset.target is None:
            raise SchemaMismatchError("Impact encoding requires a dataset with a target column")

        frame = dataset.features(columns)
        target = dataset.target_values()
        smoothing = self.params["smoothing"]
        impacts = {}

        if dataset.task_type == TaskType.CLASSIF:
            classes = dataset.class_names
            prior = {cls: float(np.clip((target == cls).mean(), 1e-12, 1 - 1e-12)) for cls in classes}

            for name in columns:
                impacts[name] = {}
                for cls in classes:
                    hits = (target == cls).astype(float)
                    grouped = hits.groupby(frame[name], observed=True).agg(["sum", "count"])
                    prob = (grouped["sum"] + smoothing) / (grouped["count"] + 2 * smoothing)
                    prob = prob.clip(1e-12, 1 - 1e-12)
                    impact = np.log(prob / (1 - prob)) - np.log(prior[cls] / (1 - prior[cls]))
                    impacts[name][cls] = impact.to_dict()
            outputs = classes
        else:
            overall = float(target.mean())
            for name in columns:
                grouped = target.groupby(frame[name], observed=True).agg(["sum", "count"])
                smoothed = (grouped["sum"] + smoothing * overall) / (grouped["count"] + smoothing)
                impacts[name] = {None: (smoothed - overall).to_dict()}
            outputs = [None]

        levels = {name: dataset.levels(name) for name in columns}
        return {"levels": levels, "impacts": impacts, "outputs": outputs}

    def _transform(self, dataset, columns, state):
        frame = dataset.features(columns)
        encoded = {}

        for name in columns:
            values = frame[name].astype(object)
            unseen = _check_unseen(self, name, values, state["levels"][name])

            for output in state["outputs"]:
                column = name if output is None else f"{name}.{output}"
                mapped = values.map(dict(state["impacts"][name][output])).astype(float)
                mapped[unseen] = 0.0
                encoded[column] = mapped

        added = pd.DataFrame(encoded, index=dataset.row_ids)
        return replace_columns(dataset, columns, added, {name: ColumnType.NUMERIC for name in added.columns})


@register_operator
class FixFactors(_CategoricalOperator):
    """Sets levels not seen at fit time to missing and drops unused categories."""

    key = OperatorKey.FIX_FACTORS
    defaults = {}

    def _validate_params(self) -> None:
        pass

    def _fit(self, dataset, columns):
        return {"levels": {name: dataset.levels(name) for name in columns}}

    def _transform(self, dataset, columns, state):
        frame = dataset.features()

        for name in columns:
            levels = list(state["levels"][name])
            ordered = dataset.column_type(name) == ColumnType.ORDERED
            values = frame[name].where(frame[name].isin(levels))
            frame[name] = pd.Categorical(values, categories=levels, ordered=ordered)

        return dataset.with_features(frame)


@register_operator
class CollapseFactors(_CategoricalOperator):
    """
    Collapses rare levels into a single ``other_level``.

    Levels whose relative frequency at fit time is below ``min_prevalence``
    are collapsed. At apply time every level outside the kept set, including
    unseen ones, maps to ``other_level``.
    """

    key = OperatorKey.COLLAPSE_FACTORS
    defaults = {"min_prevalence": 0.05, "other_level": "other"}

    def _validate_params(self) -> None:
        if not 0 <= self.params["min_prevalence"] < 1:
            raise ValueError("min_prevalence must be in [0, 1)")

    def _fit(self, dataset, columns):
        frame = dataset.features(columns)
        kept = {}

        for name in columns:
            shares = frame[name].value_counts(normalize=True, dropna=True)
            keep = [level for level in dataset.levels(name) if shares.get(level, 0.0) >= self.params["min_prevalence"]]
            collapsed = len(shares) - len(keep)
            if collapsed:
                logger.info(f"Operator '{self.id}' collapses {collapsed} rare levels of '{name}'")
            kept[name] = keep
        return {"kept": kept}

    def _transform(self, dataset, columns, state):
        frame = dataset.features()
        other = self.params["other_level"]

        for name in columns:
            keep = list(state["kept"][name])
            values = frame[name].astype(object)
            values = values.where(values.isna() | values.isin(keep), other)
            categories = keep + ([other] if other not in keep else [])
            frame[name] = pd.Categorical(
                values, categories=categories, ordered=dataset.column_type(name) == ColumnType.ORDERED
            )

        return dataset.with_features(frame)
