"""
Tests for search spaces, tuners, tune() and AutoTuner.
"""

import unittest

import numpy as np
import pytest

import pipegraph  # noqa: F401
from pipegraph.errors import UntrainedError
from pipegraph.graph import Graph
from pipegraph.learners import GraphLearner, Learner
from pipegraph.operators import make_operator
from pipegraph.resampling import CrossValidation, Holdout, resample
from pipegraph.schema import ParamDbl, ParamFct, ParamInt, ParamLgl
from pipegraph.tuning import AutoTuner, GridSearch, RandomSearch, SearchSpace, tune
from test_utils.sample_data import make_classif_dataset


class TestSearchSpace(unittest.TestCase):
    """Test cases for parameter ranges and search spaces."""

    def test_param_grids(self):
        """Each parameter type produces grid points within its range."""
        self.assertEqual(ParamInt(lower=1, upper=3).grid(5), [1, 2, 3])
        self.assertEqual(ParamInt(lower=0, upper=10).grid(3), [0, 5, 10])
        self.assertEqual(ParamDbl(lower=0.0, upper=1.0).grid(3), [0.0, 0.5, 1.0])
        np.testing.assert_allclose(ParamDbl(lower=0.01, upper=1.0, log_scale=True).grid(3), [0.01, 0.1, 1.0])
        self.assertEqual(ParamFct(levels=["a", "b"]).grid(10), ["a", "b"])
        self.assertEqual(ParamLgl().grid(10), [True, False])

    def test_invalid_ranges(self):
        """Inverted bounds and non-positive log ranges are rejected."""
        with pytest.raises(ValueError):
            ParamInt(lower=5, upper=1)
        with pytest.raises(ValueError):
            ParamDbl(lower=0.0, upper=1.0, log_scale=True)

    def test_grid_cross_product(self):
        """The search space grid is the cross product of parameter grids."""
        space = SearchSpace({"a": ParamInt(lower=1, upper=2), "b": ParamFct(levels=["x", "y", "z"])})
        grid = space.grid(5)
        self.assertEqual(len(grid), 6)
        self.assertIn({"a": 2, "b": "z"}, grid)

    def test_sampling_within_bounds(self):
        """Random samples stay inside the parameter ranges."""
        space = SearchSpace({"a": ParamInt(lower=1, upper=4), "c": ParamDbl(lower=0.1, upper=0.2)})
        rng = np.random.default_rng(0)
        for _ in range(20):
            sample = space.sample(rng)
            self.assertTrue(1 <= sample["a"] <= 4)
            self.assertTrue(0.1 <= sample["c"] <= 0.2)


class TestTuners(unittest.TestCase):
    """Test cases for grid and random search proposals."""

    def setUp(self):
        """Set up test fixtures."""
        self.space = SearchSpace({"max_depth": ParamInt(lower=1, upper=4)})

    def test_grid_search_budget(self):
        """Grid search stops after n_evals points."""
        self.assertEqual(len(GridSearch(resolution=4).propose(self.space)), 4)
        self.assertEqual(len(GridSearch(resolution=4).propose(self.space, n_evals=2)), 2)

    def test_random_search_reproducible(self):
        """Random search with a seed proposes the same configurations."""
        first = RandomSearch(seed=3).propose(self.space, n_evals=5)
        second = RandomSearch(seed=3).propose(self.space, n_evals=5)
        self.assertEqual(first, second)

    def test_random_search_needs_budget(self):
        """Random search requires n_evals."""
        with self.assertRaises(ValueError):
            RandomSearch().propose(self.space)


class TestTune(unittest.TestCase):
    """Test cases for tune()."""

    def setUp(self):
        """Set up test fixtures."""
        self.dataset = make_classif_dataset(n=60, with_missing=True)
        graph = Graph.chain(
            make_operator("impute_median"),
            make_operator("impute_oor"),
            make_operator("encode_onehot"),
        )
        self.learner = GraphLearner(graph, Learner("classif.rpart", random_state=0))

    def test_tune_graph_learner(self):
        """Preprocessing and learner parameters are tuned jointly."""
        space = SearchSpace(
            {
                "classif.rpart.max_depth": ParamInt(lower=1, upper=3),
                "impute_oor.offset": ParamFct(levels=[1.0, 5.0]),
            }
        )
        result = tune(
            self.learner,
            self.dataset,
            CrossValidation(folds=3),
            "classif.ce",
            space,
            GridSearch(resolution=3),
            seed=0,
            progress=False,
        )

        self.assertEqual(len(result.archive), 6)
        self.assertIn("classif.ce", result.archive.columns)
        self.assertEqual(result.best_score, result.archive["classif.ce"].min())
        self.assertEqual(set(result.best_params), {"classif.rpart.max_depth", "impute_oor.offset"})
        self.assertFalse(self.learner.is_trained)

    def test_unknown_parameter(self):
        """Search spaces may only name parameters of the learner."""
        space = SearchSpace({"rpart.depth": ParamInt(lower=1, upper=2)})
        with self.assertRaises(ValueError):
            tune(self.learner, self.dataset, Holdout(), "classif.ce", space, GridSearch(), progress=False)

    def test_measure_must_fit_task(self):
        """Regression measures cannot tune classification learners."""
        space = SearchSpace({"classif.rpart.max_depth": ParamInt(lower=1, upper=2)})
        with self.assertRaises(ValueError):
            tune(self.learner, self.dataset, Holdout(), "regr.mse", space, GridSearch(), progress=False)


class TestAutoTuner(unittest.TestCase):
    """Test cases for self-tuning learners."""

    def setUp(self):
        """Set up test fixtures."""
        self.dataset = make_classif_dataset(n=60)
        numeric = self.dataset.with_features(self.dataset.features(["x1", "x2"]))
        self.numeric = numeric
        self.tuner = AutoTuner(
            Learner("classif.rpart", random_state=0),
            Holdout(ratio=0.7),
            "classif.ce",
            SearchSpace({"max_depth": ParamInt(lower=1, upper=3)}),
            RandomSearch(seed=1),
            n_evals=3,
            seed=0,
        )

    def test_predict_before_train(self):
        """AutoTuners follow the learner contract."""
        with self.assertRaises(UntrainedError):
            self.tuner.predict(self.numeric)

    def test_train_uses_best_configuration(self):
        """The final model is trained with the best configuration."""
        self.tuner.train(self.numeric)

        self.assertTrue(self.tuner.is_trained)
        best = self.tuner.tuning_result.best_params["max_depth"]
        self.assertEqual(self.tuner.model.get_params()["max_depth"], best)
        self.assertEqual(len(self.tuner.predict(self.numeric)), self.numeric.nrow)

    def test_nested_resampling(self):
        """An AutoTuner can itself be resampled."""
        result = resample(self.numeric, self.tuner, CrossValidation(folds=2), seed=0, progress=False)
        self.assertEqual(result.iters, 2)
        self.assertFalse(self.tuner.is_trained)


if __name__ == "__main__":
    unittest.main()
