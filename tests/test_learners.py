"""
Tests for learners, graph learners, predictions and measures.
"""

import unittest

import numpy as np
import pandas as pd
import pytest

import pipegraph  # noqa: F401
from pipegraph.errors import SchemaMismatchError, UntrainedError
from pipegraph.graph import Graph
from pipegraph.learners import GraphLearner, Learner
from pipegraph.measures import get_measure
from pipegraph.operators import make_operator
from pipegraph.prediction import Prediction
from pipegraph.schema import LearnerKey, MeasureKey, TaskType
from test_utils.sample_data import make_classif_dataset, make_regr_dataset


def _preprocessing():
    return Graph.chain(
        make_operator("impute_median"),
        make_operator("impute_oor"),
        make_operator("encode_onehot"),
    )


class TestLearner(unittest.TestCase):
    """Test cases for plain learners."""

    def setUp(self):
        """Set up test fixtures."""
        self.dataset = make_classif_dataset(n=60)
        self.numeric = self.dataset.with_features(self.dataset.features(["x1", "x2"]))

    def test_predict_before_train(self):
        """Predicting with an untrained learner raises UntrainedError."""
        learner = Learner("classif.rpart")
        with pytest.raises(UntrainedError):
            learner.predict(self.numeric)

    def test_train_and_predict(self):
        """A trained learner predicts every row."""
        learner = Learner("classif.rpart", random_state=0)
        learner.train(self.numeric)
        prediction = learner.predict(self.numeric)

        self.assertEqual(len(prediction), self.numeric.nrow)
        self.assertTrue(prediction.row_ids.equals(self.numeric.row_ids))
        self.assertEqual(prediction.task_type, TaskType.CLASSIF)
        self.assertEqual(set(prediction.response), {"no", "yes"})

    def test_probabilities(self):
        """predict_type='prob' adds one probability column per class."""
        learner = Learner("classif.log_reg", predict_type="prob")
        learner.train(self.numeric)
        prediction = learner.predict(self.numeric)

        self.assertEqual(prediction.class_names, ["no", "yes"])
        np.testing.assert_allclose(prediction.prob.sum(axis=1).to_numpy(), 1.0)

    def test_prob_only_for_classification(self):
        """Regression learners cannot predict probabilities."""
        with self.assertRaises(ValueError):
            Learner("regr.lm", predict_type="prob")

    def test_non_numeric_features_rejected(self):
        """Estimators only accept numeric features."""
        with self.assertRaises(SchemaMismatchError):
            Learner("classif.rpart").train(self.dataset)

    def test_missing_values_rejected(self):
        """Estimators without missing value support reject NaN."""
        dataset = make_classif_dataset(n=60, with_missing=True)
        numeric = dataset.with_features(dataset.features(["x1", "x2"]))
        with self.assertRaises(SchemaMismatchError):
            Learner("classif.rpart").train(numeric)
        Learner("classif.hist_gbm", max_iter=10).train(numeric)

    def test_task_type_checked(self):
        """Classification learners reject regression data."""
        regr = make_regr_dataset()
        numeric = regr.with_features(regr.features(["x1"]))
        with self.assertRaises(SchemaMismatchError):
            Learner("classif.rpart").train(numeric)

    def test_featureless(self):
        """Featureless learners ignore features entirely."""
        learner = Learner("classif.featureless")
        learner.train(self.dataset)
        prediction = learner.predict(self.dataset)
        self.assertEqual(len(set(prediction.response)), 1)

    def test_params(self):
        """Parameters include estimator defaults; unknown names are rejected."""
        learner = Learner("classif.rpart", max_depth=3)
        params = learner.get_params()
        self.assertEqual(params["max_depth"], 3)
        self.assertIn("min_samples_split", params)

        learner.train(self.numeric)
        learner.set_params(max_depth=2)
        self.assertFalse(learner.is_trained)
        with self.assertRaises(ValueError):
            learner.set_params(depth=2)

    def test_importance(self):
        """Tree learners expose feature importances."""
        learner = Learner("classif.ranger", n_estimators=10, random_state=0)
        self.assertIsNone(learner.importance)
        learner.train(self.numeric)
        self.assertEqual(sorted(learner.importance.index), ["x1", "x2"])


class TestGraphLearner(unittest.TestCase):
    """Test cases for graph learners."""

    def setUp(self):
        """Set up test fixtures."""
        self.dataset = make_classif_dataset(n=60, with_missing=True)

    def test_predict_before_train(self):
        """Predicting before training raises UntrainedError."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart"))
        with self.assertRaises(UntrainedError):
            learner.predict(self.dataset)

    def test_train_and_predict(self):
        """Training fits the graph and the learner; predictions are row-aligned."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart", random_state=0))
        learner.train(self.dataset)

        self.assertTrue(learner.is_trained)
        self.assertTrue(learner.graph.is_trained)
        self.assertEqual(learner.id, "impute_median.impute_oor.encode_onehot.classif.rpart")
        self.assertIn("color.red", learner.transformed_features)

        test = self.dataset.subset(range(15))
        prediction = learner.predict(test)
        self.assertTrue(prediction.row_ids.equals(test.row_ids))
        self.assertIsNotNone(prediction.truth)

    def test_predict_without_target(self):
        """New data does not need a target column."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart", random_state=0))
        learner.train(self.dataset)

        new = self.dataset.subset(range(5))
        unlabeled = pipegraph.Dataset(new.features())
        prediction = learner.predict(unlabeled)
        self.assertEqual(len(prediction), 5)
        self.assertIsNone(prediction.truth)

    def test_retrain_discards_state(self):
        """Retraining replaces the state learned from earlier data."""
        learner = GraphLearner(_preprocessing(), Learner("classif.log_reg"))
        learner.train(self.dataset)
        first = learner.graph["impute_median"].state["values"]["x2"]

        shifted = self.dataset.with_features(self.dataset.features().assign(x2=lambda f: f["x2"] + 50))
        learner.train(shifted)
        self.assertAlmostEqual(learner.graph["impute_median"].state["values"]["x2"], first + 50)

    def test_failed_training_leaves_learner_untrained(self):
        """A failure in the graph or the learner resets everything."""
        learner = GraphLearner(make_operator("impute_median"), Learner("classif.rpart"))
        with self.assertRaises(SchemaMismatchError):
            learner.train(self.dataset)

        self.assertFalse(learner.is_trained)
        self.assertFalse(learner.graph.is_trained)

    def test_single_row_with_missing_factor(self):
        """A single new row whose factor value is missing is read with the trained types."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart", random_state=0))
        learner.train(self.dataset)
        self.assertEqual(learner.feature_info["color"]["type"], "factor")

        new = pipegraph.Dataset(pd.DataFrame({"x1": [0.3], "x2": [1.0], "color": [np.nan]}))
        prediction = learner.predict(new)

        self.assertEqual(len(prediction), 1)
        self.assertIn(prediction.response[0], ("no", "yes"))

    def test_predict_ignores_unknown_features(self):
        """Columns that were not seen in training are dropped before prediction."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart", random_state=0))
        learner.train(self.dataset)

        new = pipegraph.Dataset(self.dataset.features().assign(extra=1.0))
        self.assertEqual(len(learner.predict(new)), self.dataset.nrow)

        with self.assertRaises(SchemaMismatchError):
            learner.predict(pipegraph.Dataset(self.dataset.features(["x1", "color"])))

    def test_learners_from_one_graph_are_independent(self):
        """Graph learners built from the same graph and learner do not share state."""
        graph = _preprocessing()
        base = Learner("classif.rpart", random_state=0)
        first = GraphLearner(graph, base)
        second = GraphLearner(graph, base)

        first.train(self.dataset)
        expected = first.predict(self.dataset)

        relabeled = self.dataset.with_features(
            self.dataset.features().assign(color=lambda f: f["color"].replace("red", "purple"))
        )
        second.train(relabeled)

        first_levels = first.graph["encode_onehot"].state["levels"]["color"]
        self.assertIn("red", first_levels)
        self.assertNotIn("purple", first_levels)
        self.assertIn("purple", second.graph["encode_onehot"].state["levels"]["color"])
        np.testing.assert_array_equal(first.predict(self.dataset).response, expected.response)
        self.assertFalse(graph.is_trained)
        self.assertFalse(base.is_trained)

    def test_namespaced_params(self):
        """Operator and learner parameters share one namespace."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart"))
        params = learner.get_params()
        self.assertIn("impute_oor.offset", params)
        self.assertIn("classif.rpart.max_depth", params)

        learner.set_params(**{"classif.rpart.max_depth": 2, "impute_oor.offset": 3.0})
        self.assertEqual(learner.learner.params["max_depth"], 2)
        self.assertEqual(learner.graph["impute_oor"].params["offset"], 3.0)

    def test_clone(self):
        """Clones are untrained and independent."""
        learner = GraphLearner(_preprocessing(), Learner("classif.rpart", random_state=0))
        learner.train(self.dataset)
        cloned = learner.clone()

        self.assertFalse(cloned.is_trained)
        self.assertTrue(learner.is_trained)
        self.assertIsNot(cloned.graph["impute_median"], learner.graph["impute_median"])


class TestPredictionAndMeasures(unittest.TestCase):
    """Test cases for predictions and measures."""

    def setUp(self):
        """Set up test fixtures."""
        self.prediction = Prediction(
            TaskType.CLASSIF,
            row_ids=[10, 11, 12, 13],
            response=["a", "b", "b", "a"],
            truth=["a", "b", "a", "a"],
            prob=pd.DataFrame({"a": [0.9, 0.2, 0.4, 0.8], "b": [0.1, 0.8, 0.6, 0.2]}),
        )

    def test_classification_scores(self):
        """Classification error and accuracy add up to one."""
        scores = self.prediction.score(["classif.ce", "classif.acc"])
        self.assertAlmostEqual(scores["classif.ce"], 0.25)
        self.assertAlmostEqual(scores["classif.acc"], 0.75)

    def test_default_measure(self):
        """The default classification measure is the classification error."""
        self.assertEqual(list(self.prediction.score()), ["classif.ce"])

    def test_auc(self):
        """AUC uses the second class as positive."""
        self.assertAlmostEqual(self.prediction.score([MeasureKey.CLASSIF_AUC])["classif.auc"], 1.0)

    def test_prob_measure_needs_probabilities(self):
        """Probability measures fail without probabilities."""
        prediction = Prediction(TaskType.CLASSIF, [0, 1], ["a", "b"], truth=["a", "b"])
        with self.assertRaises(ValueError):
            prediction.score(["classif.logloss"])

    def test_regression_scores(self):
        """Regression measures compare numeric responses with the truth."""
        prediction = Prediction(TaskType.REGR, [0, 1], [1.0, 3.0], truth=[1.0, 1.0])
        scores = prediction.score(["regr.mse", "regr.rmse", "regr.mae"])
        self.assertAlmostEqual(scores["regr.mse"], 2.0)
        self.assertAlmostEqual(scores["regr.rmse"], np.sqrt(2.0))
        self.assertAlmostEqual(scores["regr.mae"], 1.0)

    def test_measure_task_mismatch(self):
        """Measures only score predictions of their own task type."""
        with self.assertRaises(ValueError):
            get_measure("regr.mse").score(self.prediction)

    def test_confusion_and_frame(self):
        """Predictions convert to a confusion matrix and a table."""
        confusion = self.prediction.confusion()
        self.assertEqual(confusion.loc["b", "a"], 1)

        frame = self.prediction.to_frame()
        self.assertEqual(list(frame.columns), ["row_id", "truth", "response", "prob.a", "prob.b"])

    def test_combine(self):
        """Combining predictions concatenates rows."""
        combined = Prediction.combine([self.prediction, self.prediction])
        self.assertEqual(len(combined), 8)
        self.assertEqual(len(combined.prob), 8)

    def test_length_mismatch(self):
        """Responses must match the number of rows."""
        with self.assertRaises(SchemaMismatchError):
            Prediction(TaskType.REGR, [0, 1], [1.0])


class TestLearnerKeys(unittest.TestCase):
    """Test cases for learner registry keys."""

    def test_every_key_builds(self):
        """Each registry key constructs a learner of the matching task."""
        for key in LearnerKey:
            learner = Learner(key)
            self.assertEqual(learner.task_type, key.task_type)


if __name__ == "__main__":
    unittest.main()
