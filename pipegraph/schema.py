"""
Schema definitions for pipegraph.

This module defines the symbolic keys used by the operator, learner and
measure registries, the semantic column types of a dataset, and the Pydantic
models that describe experiments, graphs and tuning search spaces in
configuration files.
"""

import math
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class ColumnType(str, Enum):
    """Semantic column types. The type drives which operators may act on a column."""

    NUMERIC = "numeric"
    FACTOR = "factor"
    ORDERED = "ordered"
    TEXT = "text"
    TIMESTAMP = "timestamp"


CATEGORICAL_TYPES = frozenset({ColumnType.FACTOR, ColumnType.ORDERED})


class TaskType(str, Enum):
    """Supervised task types."""

    CLASSIF = "classif"
    REGR = "regr"


class OperatorKey(str, Enum):
    """Registry keys for preprocessing operators."""

    NOP = "nop"
    SELECT = "select"
    REMOVE_CONSTANTS = "remove_constants"
    SCALE = "scale"
    ENCODE_ONEHOT = "encode_onehot"
    ENCODE_TREATMENT = "encode_treatment"
    ENCODE_IMPACT = "encode_impact"
    FIX_FACTORS = "fix_factors"
    COLLAPSE_FACTORS = "collapse_factors"
    IMPUTE_MEDIAN = "impute_median"
    IMPUTE_MEAN = "impute_mean"
    IMPUTE_MODE = "impute_mode"
    IMPUTE_CONSTANT = "impute_constant"
    IMPUTE_OOR = "impute_oor"
    MISSING_INDICATOR = "missind"
    DATE_FEATURES = "date_features"
    TEXT_VECTORIZER = "text_vectorizer"
    FEATURE_UNION = "feature_union"


class LearnerKey(str, Enum):
    """Registry keys for learners backed by scikit-learn estimators."""

    CLASSIF_FEATURELESS = "classif.featureless"
    CLASSIF_RPART = "classif.rpart"
    CLASSIF_RANGER = "classif.ranger"
    CLASSIF_LOG_REG = "classif.log_reg"
    CLASSIF_GBM = "classif.gbm"
    CLASSIF_HIST_GBM = "classif.hist_gbm"
    REGR_FEATURELESS = "regr.featureless"
    REGR_RPART = "regr.rpart"
    REGR_RANGER = "regr.ranger"
    REGR_LM = "regr.lm"
    REGR_GBM = "regr.gbm"
    REGR_HIST_GBM = "regr.hist_gbm"

    @property
    def task_type(self) -> TaskType:
        return TaskType(self.value.split(".", 1)[0])


class MeasureKey(str, Enum):
    """Registry keys for performance measures."""

    CLASSIF_CE = "classif.ce"
    CLASSIF_ACC = "classif.acc"
    CLASSIF_BACC = "classif.bacc"
    CLASSIF_AUC = "classif.auc"
    CLASSIF_LOGLOSS = "classif.logloss"
    REGR_MSE = "regr.mse"
    REGR_RMSE = "regr.rmse"
    REGR_MAE = "regr.mae"
    REGR_RSQ = "regr.rsq"


class ResamplingKey(str, Enum):
    """Registry keys for resampling strategies."""

    HOLDOUT = "holdout"
    CV = "cv"
    REPEATED_CV = "repeated_cv"
    SUBSAMPLING = "subsampling"
    BOOTSTRAP = "bootstrap"


# Tuning search space parameters


class ParamInt(BaseModel):
    """Integer hyperparameter range (inclusive)."""

    lower: int
    upper: int

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.lower > self.upper:
            raise ValueError("lower bound must not exceed upper bound")
        return self

    def grid(self, resolution: int) -> List[int]:
        span = self.upper - self.lower
        if span + 1 <= resolution:
            return list(range(self.lower, self.upper + 1))
        points = [self.lower + round(i * span / (resolution - 1)) for i in range(resolution)]
        return sorted(set(points))

    def sample(self, rng) -> int:
        return int(rng.integers(self.lower, self.upper + 1))


class ParamDbl(BaseModel):
    """Continuous hyperparameter range, optionally searched on a log scale."""

    lower: float
    upper: float
    log_scale: bool = False

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.lower > self.upper:
            raise ValueError("lower bound must not exceed upper bound")
        if self.log_scale and self.lower <= 0:
            raise ValueError("log-scale parameters need a positive lower bound")
        return self

    def grid(self, resolution: int) -> List[float]:
        if resolution == 1 or self.lower == self.upper:
            return [self.lower]
        if self.log_scale:
            lo, hi = math.log(self.lower), math.log(self.upper)
            return [math.exp(lo + i * (hi - lo) / (resolution - 1)) for i in range(resolution)]
        return [self.lower + i * (self.upper - self.lower) / (resolution - 1) for i in range(resolution)]

    def sample(self, rng) -> float:
        if self.log_scale:
            return float(math.exp(rng.uniform(math.log(self.lower), math.log(self.upper))))
        return float(rng.uniform(self.lower, self.upper))


class ParamFct(BaseModel):
    """Categorical hyperparameter with a fixed set of levels."""

    levels: List[Any] = Field(..., min_length=1)

    def grid(self, resolution: int) -> List[Any]:
        return list(self.levels)

    def sample(self, rng) -> Any:
        return self.levels[int(rng.integers(0, len(self.levels)))]


class ParamLgl(BaseModel):
    """Boolean hyperparameter."""

    def grid(self, resolution: int) -> List[bool]:
        return [True, False]

    def sample(self, rng) -> bool:
        return bool(rng.integers(0, 2))


ParamSpec = Union[ParamInt, ParamDbl, ParamFct, ParamLgl]


# Experiment configuration


class StepConfig(BaseModel):
    """A single operator in a configured graph."""

    key: OperatorKey
    id: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    affect_columns: Optional[List[str]] = None
    affect_types: Optional[List[ColumnType]] = None


class GraphConfig(BaseModel):
    """A graph described as a chain of steps, optionally with parallel branches.

    ``steps`` are chained in order. Each entry of ``branches`` is a step chain;
    all branches read the output of ``steps`` and are merged with a feature
    union before ``after`` is chained on.
    """

    steps: List[StepConfig] = Field(default_factory=list)
    branches: List[List[StepConfig]] = Field(default_factory=list)
    after: List[StepConfig] = Field(default_factory=list)
    prefix_branches: bool = False

    @field_validator("branches")
    def validate_branches(cls, v):
        if v and len(v) < 2:
            raise ValueError("A parallel section needs at least two branches")
        return v


class LearnerConfig(BaseModel):
    """A learner, optionally wrapped with a preprocessing graph."""

    key: LearnerKey
    id: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    predict_type: str = Field("response", pattern=r"^(response|prob)$")
    graph: Optional[GraphConfig] = None


class ResamplingConfig(BaseModel):
    """Resampling strategy settings."""

    key: ResamplingKey = ResamplingKey.CV
    folds: int = Field(3, ge=2)
    repeats: int = Field(1, ge=1)
    ratio: float = Field(2 / 3, gt=0.0, lt=1.0)
    stratify: bool = False


class ExperimentConfig(BaseModel):
    """Top-level experiment description loaded from YAML."""

    target: Optional[str] = None
    column_types: Dict[str, ColumnType] = Field(default_factory=dict)
    learners: List[LearnerConfig] = Field(..., min_length=1)
    resampling: ResamplingConfig = Field(default_factory=ResamplingConfig)
    measures: List[MeasureKey] = Field(default_factory=list)
    seed: int = 42

    @model_validator(mode="after")
    def validate_task_consistency(self):
        """All learners and measures must share a task type."""
        task_types = {learner.key.task_type for learner in self.learners}
        if len(task_types) > 1:
            raise ValueError("Learners mix classification and regression")
        task_type = task_types.pop()
        if not self.measures:
            self.measures = [MeasureKey.CLASSIF_CE if task_type == TaskType.CLASSIF else MeasureKey.REGR_MSE]
        for measure in self.measures:
            if not measure.value.startswith(task_type.value + "."):
                raise ValueError(f"Measure {measure.value} does not fit task type {task_type.value}")
        return self
