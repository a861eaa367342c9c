"""
pipegraph: composable preprocessing graphs for tabular machine learning.

Operators are stateful transforms with ``fit``/``apply`` phases. Graphs
connect operators into a DAG (chains, parallel branches and merges), and
GraphLearners combine a graph with a scikit-learn backed learner behind a
single ``train``/``predict`` contract.
"""

__version__ = "0.1.0"

from .dataset import Dataset, infer_column_type
from .errors import (
    GraphStructureError,
    PipegraphError,
    SchemaMismatchError,
    UnseenLevelError,
    UntrainedError,
)
from .schema import (
    ColumnType,
    LearnerKey,
    MeasureKey,
    OperatorKey,
    ParamDbl,
    ParamFct,
    ParamInt,
    ParamLgl,
    ResamplingKey,
    TaskType,
)
from .operators import OPERATOR_REGISTRY, Operator, make_operator, register_operator

# Importing the operator libraries registers their keys
from . import encoding, features, imputation  # noqa: F401
from .graph import FeatureUnion, Graph
from .learners import BaseLearner, GraphLearner, Learner
from .prediction import Prediction
from .measures import get_measure
from .resampling import (
    Bootstrap,
    CrossValidation,
    Custom,
    Holdout,
    RepeatedCrossValidation,
    Subsampling,
    resample,
)
from .benchmark import benchmark, benchmark_grid
from .tuning import AutoTuner, GridSearch, RandomSearch, SearchSpace, tune
from .persistence import load_learner, save_learner

__all__ = [
    "__version__",
    "AutoTuner",
    "BaseLearner",
    "Bootstrap",
    "ColumnType",
    "CrossValidation",
    "Custom",
    "Dataset",
    "FeatureUnion",
    "Graph",
    "GraphLearner",
    "GraphStructureError",
    "GridSearch",
    "Holdout",
    "Learner",
    "LearnerKey",
    "MeasureKey",
    "OPERATOR_REGISTRY",
    "Operator",
    "OperatorKey",
    "ParamDbl",
    "ParamFct",
    "ParamInt",
    "ParamLgl",
    "PipegraphError",
    "Prediction",
    "RandomSearch",
    "RepeatedCrossValidation",
    "ResamplingKey",
    "SchemaMismatchError",
    "SearchSpace",
    "Subsampling",
    "TaskType",
    "UnseenLevelError",
    "UntrainedError",
    "benchmark",
    "benchmark_grid",
    "get_measure",
    "infer_column_type",
    "load_learner",
    "make_operator",
    "register_operator",
    "resample",
    "save_learner",
    "tune",
]
