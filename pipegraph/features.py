"""
Feature engineering operators.

This module provides operators that derive numeric features from timestamp
and free-text columns, and that scale numeric columns, using scikit-learn
vectorizers and scalers fitted on the training data.
"""

import logging
import re
from typing import Any, Dict, List

import numpy as np
import pandas as pd
from sklearn.feature_extraction.text import CountVectorizer, TfidfVectorizer
from sklearn.preprocessing import MinMaxScaler, RobustScaler, StandardScaler

from .operators import Operator, register_operator, replace_columns
from .schema import ColumnType, OperatorKey

logger = logging.getLogger(__name__)

DATE_FEATURES = (
    "year",
    "month",
    "week_of_year",
    "day_of_month",
    "day_of_week",
    "hour",
    "minute",
    "second",
    "is_day",
)

# Periods used for the sin/cos encoding of cyclic date features
CYCLE_PERIODS = {
    "month": 12,
    "week_of_year": 52,
    "day_of_week": 7,
    "hour": 24,
    "minute": 60,
    "second": 60,
}


def get_scaler(method: str = "standard") -> Any:
    """Get sklearn scaler instance by method name."""
    scalers = {
        "standard": StandardScaler,
        "minmax": MinMaxScaler,
        "robust": RobustScaler,
    }

    if method not in scalers:
        raise ValueError(f"Unknown scaler method: {method}. Available: {list(scalers.keys())}")

    return scalers[method]()


def clean_text(text: Any) -> str:
    """Clean and normalize text content."""
    if not text or not isinstance(text, str):
        return ""

    text = text.lower()

    # Remove HTML tags
    text = re.sub(r"<[^>]+>", " ", text)

    # Remove URLs and email addresses
    text = re.sub(r"https?://\S+", " ", text)
    text = re.sub(r"\S+@\S+", " ", text)

    # Remove special characters but keep spaces
    text = re.sub(r"[^\w\s]", " ", text)

    return " ".join(text.split())


@register_operator
class DateFeatures(Operator):
    """
    Expands timestamp columns into numeric calendar features.

    Each selected column ``c`` is replaced by ``c.year``, ``c.month`` and so
    on for every entry of ``features``. With ``cyclic=True`` the periodic
    features additionally get ``c.<feature>_sin`` and ``c.<feature>_cos``.
    ``is_day`` is 1 between 06:00 and 19:59. The operator holds no learned
    state besides the fitted column set.
    """

    key = OperatorKey.DATE_FEATURES
    accepted_types = frozenset({ColumnType.TIMESTAMP})
    defaults = {"features": list(DATE_FEATURES), "cyclic": False, "keep_date_var": False}

    def _validate_params(self) -> None:
        unknown = [name for name in self.params["features"] if name not in DATE_FEATURES]
        if unknown:
            raise ValueError(f"Unknown date features: {unknown}")

    def _extract(self, stamps: pd.Series) -> Dict[str, pd.Series]:
        values = {
            "year": stamps.dt.year,
            "month": stamps.dt.month,
            "week_of_year": stamps.dt.isocalendar().week.astype("float"),
            "day_of_month": stamps.dt.day,
            "day_of_week": stamps.dt.dayofweek,
            "hour": stamps.dt.hour,
            "minute": stamps.dt.minute,
            "second": stamps.dt.second,
        }
        is_day = ((values["hour"] >= 6) & (values["hour"] < 20)).astype(float)
        values["is_day"] = is_day.where(stamps.notna())
        return values

    def _transform(self, dataset, columns, state):
        frame = dataset.features(columns)
        derived = {}

        for name in columns:
            stamps = pd.to_datetime(frame[name])
            extracted = self._extract(stamps)

            for feature in self.params["features"]:
                values = extracted[feature].astype(float)
                derived[f"{name}.{feature}"] = values

                if self.params["cyclic"] and feature in CYCLE_PERIODS:
                    period = CYCLE_PERIODS[feature]
                    # month and week_of_year start at 1
                    offset = 1 if feature in ("month", "week_of_year") else 0
                    angle = 2 * np.pi * (values - offset) / period
                    derived[f"{name}.{feature}_sin"] = np.sin(angle)
                    derived[f"{name}.{feature}_cos"] = np.cos(angle)

        added = pd.DataFrame(derived, index=dataset.row_ids)
        removed = [] if self.params["keep_date_var"] else columns
        return replace_columns(dataset, removed, added, {name: ColumnType.NUMERIC for name in added.columns})


@register_operator
class TextVectorizer(Operator):
    """
    Bag-of-words features for free-text columns.

    One scikit-learn vectorizer is fitted per text column; the vocabulary is
    fixed at fit time. Output columns are named ``<column>.<term>``.
    """

    key = OperatorKey.TEXT_VECTORIZER
    accepted_types = frozenset({ColumnType.TEXT})
    defaults = {
        "mode": "tfidf",
        "max_features": 100,
        "min_df": 1,
        "max_df": 1.0,
        "ngram_range": (1, 1),
        "stop_words": None,
    }

    def _validate_params(self) -> None:
        if self.params["mode"] not in ("tfidf", "count"):
            raise ValueError("mode must be 'tfidf' or 'count'")

    def _make_vectorizer(self):
        vectorizer_cls = TfidfVectorizer if self.params["mode"] == "tfidf" else CountVectorizer
        return vectorizer_cls(
            max_features=self.params["max_features"],
            min_df=self.params["min_df"],
            max_df=self.params["max_df"],
            ngram_range=tuple(self.params["ngram_range"]),
            stop_words=self.params["stop_words"],
            lowercase=True,
            strip_accents="unicode",
        )

    def _fit(self, dataset, columns):
        frame = dataset.features(columns)
        vectorizers = {}

        for name in columns:
            logger.info(f"Processing {len(frame)} text documents in column '{name}'")
            vectorizer = self._make_vectorizer()
            vectorizer.fit([clean_text(text) for text in frame[name]])
            vectorizers[name] = vectorizer
            logger.info(f"Vocabulary of '{name}' has {len(vectorizer.vocabulary_)} terms")

        return {"vectorizers": vectorizers}

    def _transform(self, dataset, columns, state):
        frame = dataset.features(columns)
        blocks: List[pd.DataFrame] = []

        for name in columns:
            vectorizer = state["vectorizers"][name]
            matrix = vectorizer.transform([clean_text(text) for text in frame[name]])
            terms = [f"{name}.{term}" for term in vectorizer.get_feature_names_out()]
            blocks.append(pd.DataFrame(matrix.toarray(), columns=terms, index=dataset.row_ids))

        added = pd.concat(blocks, axis=1) if blocks else None
        added_types = {name: ColumnType.NUMERIC for name in added.columns} if added is not None else {}
        return replace_columns(dataset, columns, added, added_types)


@register_operator
class Scale(Operator):
    """Scales numeric columns with a scikit-learn scaler fitted on the training data."""

    key = OperatorKey.SCALE
    accepted_types = frozenset({ColumnType.NUMERIC})
    defaults = {"method": "standard"}

    def _validate_params(self) -> None:
        get_scaler(self.params["method"])

    def _fit(self, dataset, columns):
        if not columns:
            return {"scaler": None}
        scaler = get_scaler(self.params["method"])
        scaler.fit(dataset.features(columns).to_numpy(dtype=float))
        return {"scaler": scaler}

    def _transform(self, dataset, columns, state):
        if not columns:
            return dataset.copy()
        frame = dataset.features()
        frame[columns] = state["scaler"].transform(frame[columns].to_numpy(dtype=float))
        return dataset.with_features(frame)
