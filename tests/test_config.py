"""
Tests for configuration loading, validation and object builders.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

import pipegraph  # noqa: F401
from pipegraph.config import PipelineConfig, build_graph, build_learner
from pipegraph.errors import GraphStructureError
from pipegraph.learners import GraphLearner, Learner
from pipegraph.schema import (
    ExperimentConfig,
    GraphConfig,
    LearnerConfig,
    MeasureKey,
    ResamplingKey,
    StepConfig,
)
from test_utils.sample_data import make_classif_dataset


def _clean_env():
    return {key: value for key, value in os.environ.items() if not key.startswith("PIPEGRAPH_")}


class TestPipelineConfig(unittest.TestCase):
    """Test cases for PipelineConfig."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())

    def test_default_config_loading(self):
        """Defaults are used when the file does not exist."""
        with patch.dict("os.environ", _clean_env(), clear=True):
            config = PipelineConfig(str(self.temp_dir / "nonexistent.yaml"))

        self.assertIn("experiment", config.config)
        self.assertEqual(config.experiment.seed, 42)
        self.assertEqual(config.experiment.resampling.key, ResamplingKey.CV)
        self.assertEqual(config.log_level, "INFO")

    def test_config_file_loading(self):
        """Values from the YAML file are validated into an ExperimentConfig."""
        config_file = self.temp_dir / "experiment.yaml"
        test_config = {
            "experiment": {
                "target": "label",
                "learners": [{"key": "regr.rpart", "params": {"max_depth": 2}}],
                "resampling": {"key": "holdout", "ratio": 0.75},
                "seed": 7,
            },
            "output": {"dir": str(self.temp_dir / "out")},
        }
        with open(config_file, "w") as f:
            yaml.dump(test_config, f)

        with patch.dict("os.environ", _clean_env(), clear=True):
            config = PipelineConfig(str(config_file))

        self.assertEqual(config.experiment.target, "label")
        self.assertEqual(config.experiment.seed, 7)
        self.assertEqual(config.experiment.measures, [MeasureKey.REGR_MSE])
        self.assertEqual(config.output_dir, self.temp_dir / "out")
        # Sections the file leaves out fall back to defaults
        self.assertEqual(config.log_level, "INFO")

    def test_env_overrides(self):
        """PIPEGRAPH_* variables override file values."""
        env = {
            **_clean_env(),
            "PIPEGRAPH_SEED": "123",
            "PIPEGRAPH_FOLDS": "5",
            "PIPEGRAPH_OUTPUT_DIR": str(self.temp_dir / "env_out"),
            "PIPEGRAPH_LOG_LEVEL": "debug",
        }
        with patch.dict("os.environ", env, clear=True):
            config = PipelineConfig(str(self.temp_dir / "nonexistent.yaml"))

        self.assertEqual(config.experiment.seed, 123)
        self.assertEqual(config.experiment.resampling.folds, 5)
        self.assertEqual(config.output_dir, self.temp_dir / "env_out")
        self.assertEqual(config.log_file, self.temp_dir / "env_out" / "logs" / "pipegraph.log")
        self.assertEqual(config.log_level, "DEBUG")

    def test_invalid_yaml(self):
        """Unparseable YAML raises ValueError."""
        config_file = self.temp_dir / "broken.yaml"
        config_file.write_text("experiment: [unclosed\n")
        with self.assertRaises(ValueError):
            PipelineConfig(str(config_file))

    def test_invalid_experiment(self):
        """Invalid experiment sections raise ValueError."""
        config_file = self.temp_dir / "invalid.yaml"
        with open(config_file, "w") as f:
            yaml.dump({"experiment": {"learners": [{"key": "classif.unknown"}]}}, f)

        with patch.dict("os.environ", _clean_env(), clear=True):
            with self.assertRaises(ValueError):
                PipelineConfig(str(config_file))

    def test_invalid_log_level(self):
        """Unknown log levels are rejected."""
        env = {**_clean_env(), "PIPEGRAPH_LOG_LEVEL": "chatty"}
        with patch.dict("os.environ", env, clear=True):
            with self.assertRaises(ValueError):
                PipelineConfig(str(self.temp_dir / "nonexistent.yaml"))


class TestExperimentConfig(unittest.TestCase):
    """Test cases for experiment validation."""

    def test_mixed_task_types_rejected(self):
        """Learners must all solve the same task type."""
        with pytest.raises(ValueError):
            ExperimentConfig(learners=[{"key": "classif.rpart"}, {"key": "regr.rpart"}])

    def test_measure_must_fit_task(self):
        """Measures must match the learners' task type."""
        with pytest.raises(ValueError):
            ExperimentConfig(learners=[{"key": "classif.rpart"}], measures=["regr.mse"])

    def test_default_measure(self):
        """Classification experiments default to the classification error."""
        config = ExperimentConfig(learners=[{"key": "classif.rpart"}])
        self.assertEqual(config.measures, [MeasureKey.CLASSIF_CE])

    def test_branches_need_two(self):
        """A single branch is not a parallel section."""
        with pytest.raises(ValueError):
            GraphConfig(branches=[[{"key": "nop"}]])


class TestBuilders(unittest.TestCase):
    """Test cases for build_graph and build_learner."""

    def test_build_chain(self):
        """Steps become a chain of operators."""
        graph = build_graph(
            GraphConfig(
                steps=[
                    StepConfig(key="impute_median"),
                    StepConfig(key="scale", id="scaler", params={"method": "robust"}),
                ]
            )
        )
        self.assertEqual(graph.topological_order(), ["impute_median", "scaler"])
        self.assertEqual(graph["scaler"].params["method"], "robust")

    def test_build_branches(self):
        """Branches are merged by a feature union before the after steps."""
        graph_config = GraphConfig(
            branches=[
                [{"key": "impute_median"}, {"key": "impute_oor", "affect_types": ["factor"]}],
                [{"key": "missind"}],
            ],
            after=[{"key": "encode_onehot"}],
        )
        graph = build_graph(graph_config)

        self.assertEqual(graph.sinks, ["encode_onehot"])
        self.assertEqual(graph.predecessors("feature_union"), ["impute_oor", "missind"])

        dataset = make_classif_dataset(n=30, with_missing=True)
        output = graph.fit(dataset)
        self.assertIn("missing_x2", output.feature_names)
        self.assertFalse(output.has_missing())

    def test_duplicate_ids_in_branches(self):
        """Operators in different branches still need distinct ids."""
        graph_config = GraphConfig(branches=[[{"key": "scale"}], [{"key": "scale"}]])
        with self.assertRaises(GraphStructureError):
            build_graph(graph_config)

    def test_empty_graph(self):
        """A graph without operators is rejected."""
        with self.assertRaises(ValueError):
            build_graph(GraphConfig())

    def test_build_learner(self):
        """Learners are wrapped in a GraphLearner only when a graph is configured."""
        plain = build_learner(LearnerConfig(key="classif.rpart", params={"max_depth": 2}))
        self.assertIsInstance(plain, Learner)
        self.assertEqual(plain.params["max_depth"], 2)

        wrapped = build_learner(
            LearnerConfig(
                key="classif.rpart",
                id="tree",
                predict_type="prob",
                graph={"steps": [{"key": "impute_oor"}, {"key": "encode_onehot"}]},
            )
        )
        self.assertIsInstance(wrapped, GraphLearner)
        self.assertEqual(wrapped.id, "impute_oor.encode_onehot.tree")
        self.assertEqual(wrapped.predict_type, "prob")


if __name__ == "__main__":
    unittest.main()
