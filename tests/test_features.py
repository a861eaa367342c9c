"""
Tests for date, text and scaling operators.
"""

import unittest

import numpy as np
import pandas as pd
import pytest

import pipegraph  # noqa: F401
from pipegraph.dataset import Dataset
from pipegraph.features import clean_text, get_scaler
from pipegraph.operators import make_operator
from pipegraph.schema import ColumnType
from test_utils.sample_data import make_mixed_dataset


class TestHelpers(unittest.TestCase):
    """Test cases for module helpers."""

    def test_get_scaler(self):
        """Known methods return sklearn scalers."""
        self.assertEqual(type(get_scaler("minmax")).__name__, "MinMaxScaler")
        with pytest.raises(ValueError):
            get_scaler("unknown")

    def test_clean_text(self):
        """Text is lowercased and stripped of markup and punctuation."""
        self.assertEqual(clean_text("Hello <b>World</b>! see https://x.org"), "hello world see")
        self.assertEqual(clean_text(None), "")
        self.assertEqual(clean_text(np.nan), "")


class TestDateFeatures(unittest.TestCase):
    """Test cases for date feature extraction."""

    def setUp(self):
        """Set up test fixtures."""
        self.dataset = make_mixed_dataset()

    def test_default_features(self):
        """The timestamp column is replaced by calendar features."""
        output = make_operator("date_features").fit(self.dataset)

        self.assertNotIn("when", output.feature_names)
        frame = output.features()
        self.assertEqual(frame["when.year"].tolist(), [2021.0, 2021.0, 2021.0, 2022.0])
        self.assertEqual(frame["when.month"].tolist(), [1.0, 6.0, 12.0, 3.0])
        self.assertEqual(frame["when.is_day"].tolist(), [1.0, 0.0, 1.0, 0.0])
        self.assertEqual(output.column_type("when.hour"), ColumnType.NUMERIC)

    def test_selected_features_and_cyclic(self):
        """Cyclic encoding adds sin/cos columns for periodic features."""
        operator = make_operator("date_features", features=["year", "month"], cyclic=True, keep_date_var=True)
        output = operator.fit(self.dataset)

        self.assertIn("when", output.feature_names)
        self.assertIn("when.month_sin", output.feature_names)
        self.assertNotIn("when.year_sin", output.feature_names)
        self.assertAlmostEqual(output.features()["when.month_sin"].iloc[0], 0.0)

    def test_missing_timestamps(self):
        """Missing timestamps give missing features."""
        frame = pd.DataFrame({"when": pd.to_datetime(["2020-05-01 10:00", None])})
        output = make_operator("date_features", features=["hour", "is_day"]).fit(Dataset(frame))
        values = output.features()
        self.assertTrue(values.loc[1].isna().all())
        self.assertEqual(values.loc[0, "when.is_day"], 1.0)

    def test_unknown_feature(self):
        """Unknown feature names are rejected."""
        with self.assertRaises(ValueError):
            make_operator("date_features", features=["fortnight"])


class TestTextVectorizer(unittest.TestCase):
    """Test cases for text vectorization."""

    def setUp(self):
        """Set up test fixtures."""
        self.dataset = make_mixed_dataset()

    def test_vocabulary_fixed_at_fit(self):
        """Apply produces the fit-time term columns."""
        operator = make_operator("text_vectorizer", mode="count")
        output = operator.fit(self.dataset)

        self.assertNotIn("review", output.feature_names)
        self.assertIn("review.great", output.feature_names)
        self.assertEqual(output.features()["review.great"].tolist(), [1.0, 0.0, 1.0, 1.0])

        new = self.dataset.with_features(self.dataset.features().assign(review=["brand new words"] * 4))
        applied = operator.apply(new)
        self.assertEqual(applied.feature_names, output.feature_names)
        self.assertEqual(applied.features()["review.great"].sum(), 0.0)

    def test_max_features(self):
        """The vocabulary is capped by max_features."""
        output = make_operator("text_vectorizer", max_features=3).fit(self.dataset)
        terms = [name for name in output.feature_names if name.startswith("review.")]
        self.assertEqual(len(terms), 3)


class TestScale(unittest.TestCase):
    """Test cases for scaling."""

    def test_standard_scaling(self):
        """Scaled training columns have zero mean."""
        dataset = make_mixed_dataset()
        operator = make_operator("scale")
        output = operator.fit(dataset)
        self.assertAlmostEqual(output.features()["price"].mean(), 0.0)

        applied = operator.apply(dataset.subset([0]))
        self.assertAlmostEqual(applied.features()["price"].iloc[0], output.features()["price"].iloc[0])

    def test_minmax_scaling(self):
        """Min-max scaling maps the training range to [0, 1]."""
        output = make_operator("scale", method="minmax").fit(make_mixed_dataset())
        prices = output.features()["price"]
        self.assertAlmostEqual(prices.min(), 0.0)
        self.assertAlmostEqual(prices.max(), 1.0)


if __name__ == "__main__":
    unittest.main()
