"""
Operator base class and registry.

An operator is a named, stateful transform with two phases: ``fit`` learns
state from a dataset and returns the transformed dataset, ``apply`` reuses the
state captured at fit time to transform new data. Operators are constructed
from symbolic registry keys (see ``OperatorKey``) through ``make_operator``.
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Type, Union

import numpy as np
import pandas as pd

from .dataset import Dataset
from .errors import UntrainedError
from .schema import ColumnType, OperatorKey

logger = logging.getLogger(__name__)

ALL_TYPES = frozenset(ColumnType)

OPERATOR_REGISTRY: Dict[OperatorKey, Type["Operator"]] = {}


def _freeze(value: Any) -> Any:
    if isinstance(value, FrozenState):
        return value
    if isinstance(value, Mapping):
        return FrozenState(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    if isinstance(value, np.ndarray):
        frozen = value.copy()
        frozen.flags.writeable = False
        return frozen
    return value


class FrozenState(Mapping):
    """
    Read-only mapping holding the state an operator learned during fit.

    Nested containers are frozen too: mappings become FrozenState, lists
    become tuples and arrays are marked read-only.
    """

    def __init__(self, data: Mapping):
        self._data = {key: _freeze(value) for key, value in data.items()}

    def __getitem__(self, key):
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"FrozenState({sorted(self._data)})"


def register_operator(cls: Type["Operator"]) -> Type["Operator"]:
    """Class decorator adding an operator to the registry under its key."""
    if cls.key is None:
        raise TypeError(f"{cls.__name__} has no registry key")
    if cls.key in OPERATOR_REGISTRY:
        raise ValueError(f"Operator key already registered: {cls.key.value}")
    OPERATOR_REGISTRY[cls.key] = cls
    return cls


def make_operator(key: Union[OperatorKey, str], **params) -> "Operator":
    """
    Construct an operator from its registry key.

    Args:
        key: Registry key; strings are parsed into ``OperatorKey`` first
        **params: Constructor arguments (id, affect_columns, affect_types and
            operator parameters)

    Returns:
        A new, untrained operator
    """
    key = OperatorKey(key)
    if key not in OPERATOR_REGISTRY:
        raise ValueError(f"No operator registered for key: {key.value}")
    return OPERATOR_REGISTRY[key](**params)


class Operator:
    """Base class for single-input operators."""

    key: Optional[OperatorKey] = None
    accepted_types: FrozenSet[ColumnType] = ALL_TYPES
    defaults: Dict[str, Any] = {}
    n_inputs: int = 1

    def __init__(
        self,
        id: Optional[str] = None,
        affect_columns: Optional[Iterable[str]] = None,
        affect_types: Optional[Iterable[Union[ColumnType, str]]] = None,
        **params,
    ):
        unknown = sorted(set(params) - set(self.defaults))
        if unknown:
            raise ValueError(f"Unknown parameters for operator '{self.key.value}': {unknown}")

        self.id = id or self.key.value
        self.affect_columns = list(affect_columns) if affect_columns is not None else None
        self.affect_types = frozenset(ColumnType(kind) for kind in affect_types) if affect_types else None
        if self.affect_types and not self.affect_types <= self.accepted_types:
            rejected = sorted(kind.value for kind in self.affect_types - self.accepted_types)
            raise ValueError(f"Operator '{self.id}' cannot act on column types {rejected}")

        self.params = {**copy.deepcopy(self.defaults), **params}
        self._validate_params()

        self._state: Optional[Mapping[str, Any]] = None
        self._columns: Optional[Dict[str, ColumnType]] = None

    def _validate_params(self) -> None:
        """Hook for subclasses to check parameter values."""

    # Lifecycle

    @property
    def is_trained(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> Mapping[str, Any]:
        if self._state is None:
            raise UntrainedError(f"Operator '{self.id}' has no state before fit")
        return self._state

    @property
    def fitted_columns(self) -> List[str]:
        if self._columns is None:
            raise UntrainedError(f"Operator '{self.id}' has no state before fit")
        return list(self._columns)

    def reset(self) -> None:
        """Discard learned state."""
        self._state = None
        self._columns = None

    def fit(self, dataset: Dataset) -> Dataset:
        """
        Learn state from ``dataset`` and return the transformed dataset.

        Any previously learned state is discarded first. The input dataset is
        not modified.
        """
        self.reset()
        columns = self.select_columns(dataset)
        logger.debug(f"Fitting operator '{self.id}' on {dataset.nrow} rows, columns={columns}")

        state = FrozenState(self._fit(dataset, columns))
        output = self._transform(dataset, columns, state)

        self._columns = {name: dataset.column_type(name) for name in columns}
        self._state = state
        return output

    def apply(self, dataset: Dataset) -> Dataset:
        """Transform ``dataset`` using the state captured by the last ``fit``."""
        if not self.is_trained:
            raise UntrainedError(f"Operator '{self.id}' must be fit before apply")

        for name, kind in self._columns.items():
            dataset.require_columns([name], {kind})

        logger.debug(f"Applying operator '{self.id}' to {dataset.nrow} rows")
        return self._transform(dataset, list(self._columns), self._state)

    def select_columns(self, dataset: Dataset) -> List[str]:
        """Columns this operator acts on, validated against its accepted types."""
        if self.affect_columns is not None:
            dataset.require_columns(self.affect_columns, self.affect_types or self.accepted_types)
            return list(self.affect_columns)
        return dataset.columns_of(self.affect_types or self.accepted_types)

    def _fit(self, dataset: Dataset, columns: List[str]) -> Dict[str, Any]:
        return {}

    def _transform(self, dataset: Dataset, columns: List[str], state: Mapping[str, Any]) -> Dataset:
        raise NotImplementedError

    # Parameters

    def get_params(self) -> Dict[str, Any]:
        params = dict(self.params)
        params["affect_columns"] = self.affect_columns
        params["affect_types"] = sorted(kind.value for kind in self.affect_types) if self.affect_types else None
        return params

    def set_params(self, **params) -> "Operator":
        """Update parameters; learned state is discarded."""
        for name in ("affect_columns", "affect_types"):
            if name in params:
                value = params.pop(name)
                if name == "affect_columns":
                    self.affect_columns = list(value) if value is not None else None
                else:
                    self.affect_types = frozenset(ColumnType(kind) for kind in value) if value else None

        unknown = sorted(set(params) - set(self.defaults))
        if unknown:
            raise ValueError(f"Unknown parameters for operator '{self.id}': {unknown}")

        self.params.update(params)
        self._validate_params()
        self.reset()
        return self

    def clone(self) -> "Operator":
        """Untrained deep copy with the same configuration."""
        cloned = copy.deepcopy(self)
        cloned.reset()
        return cloned

    def __rshift__(self, other):
        from .graph import Graph

        return Graph.chain(self, other)

    def __repr__(self) -> str:
        status = "trained" if self.is_trained else "untrained"
        return f"{type(self).__name__}(id={self.id!r}, {status})"


def replace_columns(
    dataset: Dataset,
    removed: Iterable[str],
    added: Optional[pd.DataFrame] = None,
    added_types: Optional[Dict[str, ColumnType]] = None,
) -> Dataset:
    """New dataset without ``removed`` columns and with ``added`` appended."""
    removed = set(removed)
    features = dataset.features([name for name in dataset.feature_names if name not in removed])
    types = {}

    if added is not None and added.shape[1] > 0:
        clashes = [name for name in added.columns if name in features.columns]
        if clashes:
            raise ValueError(f"Generated columns clash with existing features: {clashes}")
        features = pd.concat([features, added.set_axis(features.index, axis=0)], axis=1)
        types = dict(added_types or {})

    return dataset.with_features(features, types)


@register_operator
class Nop(Operator):
    """Passes its input through unchanged."""

    key = OperatorKey.NOP

    def _transform(self, dataset, columns, state):
        return dataset.copy()


@register_operator
class Select(Operator):
    """Keeps only the selected feature columns (or drops them with ``invert``)."""

    key = OperatorKey.SELECT
    defaults = {"invert": False}

    def _transform(self, dataset, columns, state):
        if self.params["invert"]:
            keep = [name for name in dataset.feature_names if name not in columns]
        else:
            keep = list(columns)
        return dataset.with_features(dataset.features(keep))


@register_operator
class RemoveConstants(Operator):
    """Drops columns that held at most one distinct non-missing value at fit time."""

    key = OperatorKey.REMOVE_CONSTANTS
    defaults = {"ignore_missing": True}

    def _fit(self, dataset, columns):
        frame = dataset.features(columns)
        dropna = self.params["ignore_missing"]
        constant = [name for name in columns if frame[name].nunique(dropna=dropna) <= 1]

        if constant:
            logger.info(f"Operator '{self.id}' removes constant columns: {constant}")
        return {"constant": constant}

    def _transform(self, dataset, columns, state):
        return replace_columns(dataset, state["constant"])
