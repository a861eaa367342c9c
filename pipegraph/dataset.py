"""
Tabular datasets with declared semantic column types.

A Dataset is a pandas DataFrame plus one semantic type per column and an
optional target column. Operators read the declared types to decide which
columns they act on, and every transformation returns a new Dataset.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .errors import SchemaMismatchError
from .schema import CATEGORICAL_TYPES, ColumnType, TaskType

logger = logging.getLogger(__name__)


def infer_column_type(series: pd.Series) -> ColumnType:
    """Infer the semantic type of a column from its pandas dtype."""
    dtype = series.dtype

    if isinstance(dtype, pd.CategoricalDtype):
        return ColumnType.ORDERED if dtype.ordered else ColumnType.FACTOR
    if pd.api.types.is_bool_dtype(dtype) or pd.api.types.is_numeric_dtype(dtype):
        return ColumnType.NUMERIC
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return ColumnType.TIMESTAMP

    # Strings default to factors; free text has to be declared explicitly
    return ColumnType.FACTOR


def _coerce(series: pd.Series, name: str, kind: ColumnType, levels: Optional[List[Any]] = None) -> pd.Series:
    """Cast ``series`` to the representation of ``kind``; levels fix the category order of ordered factors."""
    try:
        if kind == ColumnType.NUMERIC:
            if pd.api.types.is_bool_dtype(series.dtype) or pd.api.types.is_numeric_dtype(series.dtype):
                return series
            return pd.to_numeric(series)
        if kind == ColumnType.TIMESTAMP:
            return pd.to_datetime(series)
        if kind == ColumnType.ORDERED:
            known = list(levels or [])
            extra = sorted((value for value in series.dropna().unique().tolist() if value not in known), key=str)
            return pd.Series(pd.Categorical(series, categories=known + extra, ordered=True), index=series.index)
    except (TypeError, ValueError) as e:
        raise SchemaMismatchError(f"Column '{name}' cannot be converted to {kind.value}: {e}", column=name) from e

    if isinstance(series.dtype, pd.CategoricalDtype):
        return series
    return series.astype(object)


class Dataset:
    """A table of named, typed columns with an optional target column."""

    def __init__(
        self,
        data: Union[pd.DataFrame, Dict[str, Sequence[Any]]],
        target: Optional[str] = None,
        column_types: Optional[Dict[str, Union[ColumnType, str]]] = None,
        task_type: Optional[Union[TaskType, str]] = None,
        id: Optional[str] = None,
    ):
        """
        Create a dataset.

        Args:
            data: Table of observations; the index is used as row ids
            target: Name of the target column for supervised tasks
            column_types: Declared semantic types, inferred from dtypes where absent
            task_type: Task type, inferred from the target column type if omitted
            id: Optional name used in logs and benchmark tables
        """
        frame = data.copy() if isinstance(data, pd.DataFrame) else pd.DataFrame(data)

        if frame.columns.duplicated().any():
            duplicated = list(frame.columns[frame.columns.duplicated()])
            raise SchemaMismatchError(f"Duplicate column names: {duplicated}")
        if not frame.index.is_unique:
            raise SchemaMismatchError("Row ids (index values) must be unique")

        declared = {name: ColumnType(kind) for name, kind in (column_types or {}).items()}
        unknown = [name for name in declared if name not in frame.columns]
        if unknown:
            raise SchemaMismatchError(f"Types declared for unknown columns: {unknown}", column=unknown[0])

        if target is not None and target not in frame.columns:
            raise SchemaMismatchError(f"Target column '{target}' not found", column=target)

        self._data = frame
        self._types = {name: declared.get(name) or infer_column_type(frame[name]) for name in frame.columns}
        self.target = target
        self.id = id or "dataset"
        self.task_type = self._resolve_task_type(task_type)

    def _resolve_task_type(self, task_type: Optional[Union[TaskType, str]]) -> Optional[TaskType]:
        if self.target is None:
            return None
        if task_type is not None:
            return TaskType(task_type)

        target_type = self._types[self.target]
        if target_type in CATEGORICAL_TYPES:
            return TaskType.CLASSIF
        if target_type == ColumnType.NUMERIC:
            return TaskType.REGR
        raise SchemaMismatchError(
            f"Target column '{self.target}' has type {target_type.value}, expected numeric or categorical",
            column=self.target,
        )

    @classmethod
    def from_csv(
        cls,
        path: Union[str, Path],
        target: Optional[str] = None,
        column_types: Optional[Dict[str, Union[ColumnType, str]]] = None,
        **kwargs,
    ) -> "Dataset":
        """Load a dataset from CSV, parsing declared timestamp columns as dates."""
        column_types = {name: ColumnType(kind) for name, kind in (column_types or {}).items()}
        date_columns = [name for name, kind in column_types.items() if kind == ColumnType.TIMESTAMP]

        frame = pd.read_csv(path, parse_dates=date_columns or False)
        logger.info(f"Loaded {len(frame)} rows and {frame.shape[1]} columns from {path}")

        return cls(frame, target=target, column_types=column_types, id=kwargs.pop("id", Path(path).stem), **kwargs)

    # Introspection

    @property
    def nrow(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    @property
    def row_ids(self) -> pd.Index:
        return self._data.index

    @property
    def column_types(self) -> Dict[str, ColumnType]:
        return dict(self._types)

    @property
    def feature_names(self) -> List[str]:
        return [name for name in self._data.columns if name != self.target]

    @property
    def feature_types(self) -> Dict[str, ColumnType]:
        return {name: self._types[name] for name in self.feature_names}

    def column_type(self, name: str) -> ColumnType:
        if name not in self._types:
            raise SchemaMismatchError(f"Column '{name}' not found", column=name)
        return self._types[name]

    def columns_of(self, types: Iterable[ColumnType]) -> List[str]:
        """Feature columns whose declared type is one of ``types``."""
        types = set(types)
        return [name for name in self.feature_names if self._types[name] in types]

    def require_columns(self, names: Iterable[str], accepted: Optional[Iterable[ColumnType]] = None) -> None:
        """Raise SchemaMismatchError unless every column exists (with an accepted type)."""
        accepted = set(accepted) if accepted is not None else None

        for name in names:
            if name not in self._types or name == self.target:
                raise SchemaMismatchError(f"Required feature column '{name}' is missing", column=name)
            if accepted is not None and self._types[name] not in accepted:
                allowed = sorted(kind.value for kind in accepted)
                raise SchemaMismatchError(
                    f"Column '{name}' has type {self._types[name].value}, expected one of {allowed}",
                    column=name,
                )

    def levels(self, name: str) -> List[Any]:
        """Observed levels of a categorical column, in category order for ordered factors."""
        series = self._data[name]
        if isinstance(series.dtype, pd.CategoricalDtype):
            present = set(series.dropna().unique())
            return [level for level in series.cat.categories if level in present]
        return sorted(series.dropna().unique().tolist(), key=str)

    @property
    def class_names(self) -> List[Any]:
        if self.task_type != TaskType.CLASSIF:
            return []
        return self.levels(self.target)

    def missing_counts(self) -> Dict[str, int]:
        """Number of missing values per feature column."""
        counts = self._data[self.feature_names].isna().sum()
        return {name: int(count) for name, count in counts.items()}

    def has_missing(self) -> bool:
        return bool(self._data[self.feature_names].isna().to_numpy().any())

    # Data access (always copies)

    def frame(self) -> pd.DataFrame:
        return self._data.copy()

    def features(self, names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        return self._data[list(names) if names is not None else self.feature_names].copy()

    def target_values(self) -> pd.Series:
        if self.target is None:
            raise SchemaMismatchError("Dataset has no target column")
        return self._data[self.target].copy()

    def has_target_values(self) -> bool:
        return self.target is not None and self.target in self._data.columns

    # Derivation

    def subset(self, rows: Sequence[int]) -> "Dataset":
        """New dataset with the rows at the given positions."""
        positions = np.asarray(rows, dtype=int)
        frame = self._data.iloc[positions]
        if not frame.index.is_unique:
            # Bootstrap draws repeat rows; give duplicates fresh ids
            frame = frame.reset_index(drop=True)
        return self._derive(frame, self._types)

    def with_features(self, features: pd.DataFrame, column_types: Optional[Dict[str, ColumnType]] = None) -> "Dataset":
        """
        New dataset whose feature columns are replaced by ``features``.

        The target column and row ids are carried over unchanged. Types of
        new columns come from ``column_types``, then from columns of the same
        name in this dataset, then from dtype inference.
        """
        if len(features) != self.nrow or not features.index.equals(self._data.index):
            raise SchemaMismatchError(
                f"Transformed features are not row-aligned with the input ({len(features)} vs {self.nrow} rows)"
            )

        frame = features.copy()
        if self.target is not None:
            if self.target in frame.columns:
                raise SchemaMismatchError(f"Feature output may not contain the target '{self.target}'", self.target)
            frame[self.target] = self._data[self.target]

        column_types = column_types or {}
        types = {}
        for name in frame.columns:
            if name in column_types:
                types[name] = ColumnType(column_types[name])
            elif name in self._types:
                types[name] = self._types[name]
            else:
                types[name] = infer_column_type(frame[name])

        return self._derive(frame, types)

    def _derive(self, frame: pd.DataFrame, types: Dict[str, ColumnType]) -> "Dataset":
        return Dataset(
            frame,
            target=self.target,
            column_types={name: types[name] for name in frame.columns},
            task_type=self.task_type,
            id=self.id,
        )

    def copy(self) -> "Dataset":
        return self._derive(self._data, self._types)

    # Feature types of trained models

    def feature_info(self) -> Dict[str, Dict[str, Any]]:
        """Type of every feature, plus the observed levels of categorical features."""
        info = {}
        for name, kind in self.feature_types.items():
            entry: Dict[str, Any] = {"type": kind.value}
            if kind in CATEGORICAL_TYPES:
                entry["levels"] = self.levels(name)
            info[name] = entry
        return info

    def conform(self, feature_info: Dict[str, Dict[str, Any]]) -> "Dataset":
        """
        New dataset whose features match the types recorded by ``feature_info``.

        Types of new data are inferred from dtypes, which can disagree with
        the training data: a factor column holding only missing values reads
        as numeric, dates read as strings. Recorded features are cast back to
        their recorded types and features that were not recorded are dropped.

        Raises:
            SchemaMismatchError: If a recorded feature is missing or cannot
                be converted
        """
        missing = [name for name in feature_info if name not in self._types or name == self.target]
        if missing:
            raise SchemaMismatchError(f"Feature columns missing from new data: {missing}", column=missing[0])

        columns = {}
        types = {}
        for name, entry in feature_info.items():
            kind = ColumnType(entry["type"])
            columns[name] = _coerce(self._data[name], name, kind, entry.get("levels"))
            types[name] = kind

        dropped = [name for name in self.feature_names if name not in feature_info]
        if dropped:
            logger.debug(f"Dropping features unknown at training time: {dropped}")

        frame = pd.DataFrame(columns, index=self._data.index)
        if self.target is not None:
            frame[self.target] = self._data[self.target]
            types[self.target] = self._types[self.target]
        return self._derive(frame, types)

    def __repr__(self) -> str:
        return (
            f"Dataset(id={self.id!r}, rows={self.nrow}, features={len(self.feature_names)}, "
            f"target={self.target!r}, task_type={self.task_type.value if self.task_type else None})"
        )
