"""
Experiment configuration: YAML loading, environment overrides and builders
that turn validated configuration into graphs and learners.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .graph import FeatureUnion, Graph
from .learners import BaseLearner, GraphLearner, Learner
from .operators import Operator, make_operator
from .schema import ExperimentConfig, GraphConfig, LearnerConfig, StepConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/experiment.yaml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class PipelineConfig:
    """Configuration manager for experiments."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration from file or defaults."""
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.config = self._load_config()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f) or {}

        except FileNotFoundError:
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            config = self._get_default_config()
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing config file: {e}")

        # Fill sections the file leaves out
        defaults = self._get_default_config()
        for section in ("output", "logging"):
            config.setdefault(section, {})
            for key, value in defaults[section].items():
                config[section].setdefault(key, value)
        config.setdefault("experiment", defaults["experiment"])

        return self._apply_env_overrides(config)

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "experiment": {
                "target": None,
                "column_types": {},
                "learners": [
                    {"key": "classif.featureless"},
                    {
                        "key": "classif.rpart",
                        "graph": {
                            "steps": [
                                {"key": "impute_oor"},
                                {"key": "collapse_factors"},
                                {"key": "encode_onehot"},
                            ]
                        },
                    },
                ],
                "resampling": {"key": "cv", "folds": 3},
                "measures": ["classif.ce"],
                "seed": 42,
            },
            "output": {"dir": "outputs"},
            "logging": {"level": "INFO", "file": "outputs/logs/pipegraph.log"},
        }

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        if "PIPEGRAPH_SEED" in os.environ:
            config["experiment"]["seed"] = int(os.environ["PIPEGRAPH_SEED"])

        if "PIPEGRAPH_FOLDS" in os.environ:
            resampling = config["experiment"].setdefault("resampling", {})
            resampling["folds"] = int(os.environ["PIPEGRAPH_FOLDS"])

        if "PIPEGRAPH_OUTPUT_DIR" in os.environ:
            output_dir = os.environ["PIPEGRAPH_OUTPUT_DIR"]
            config["output"]["dir"] = output_dir
            config["logging"]["file"] = f"{output_dir}/logs/pipegraph.log"

        if "PIPEGRAPH_LOG_LEVEL" in os.environ:
            config["logging"]["level"] = os.environ["PIPEGRAPH_LOG_LEVEL"].upper()

        return config

    def _validate_config(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.config.get("experiment"), dict):
            raise ValueError("Missing required config section: experiment")

        if self.config["logging"]["level"] not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {LOG_LEVELS}")

        try:
            self.experiment = ExperimentConfig(**self.config["experiment"])
        except ValidationError as e:
            raise ValueError(f"Invalid experiment configuration: {e}") from e

    @property
    def output_dir(self) -> Path:
        return Path(self.config["output"]["dir"])

    @property
    def log_level(self) -> str:
        return self.config["logging"]["level"]

    @property
    def log_file(self) -> Path:
        return Path(self.config["logging"]["file"])

    def with_target(self, target: str) -> "PipelineConfig":
        """Copy of this configuration with a different target column."""
        updated = copy.copy(self)
        updated.config = copy.deepcopy(self.config)
        updated.config["experiment"]["target"] = target
        updated._validate_config()
        return updated


def build_operator(step: StepConfig) -> Operator:
    return make_operator(
        step.key,
        id=step.id,
        affect_columns=step.affect_columns,
        affect_types=step.affect_types,
        **step.params,
    )


def _build_chain(steps: List[StepConfig]) -> List[Operator]:
    return [build_operator(step) for step in steps]


def build_graph(graph_config: GraphConfig) -> Graph:
    """
    Build a Graph from its configuration.

    ``steps`` run first, then the ``branches`` in parallel (merged by a
    feature union), then ``after``.
    """
    items: List[Any] = _build_chain(graph_config.steps)

    if graph_config.branches:
        branches = []
        for steps in graph_config.branches:
            if not steps:
                raise ValueError("Graph branches may not be empty")
            branches.append(Graph.chain(*_build_chain(steps)))
        merge = FeatureUnion(prefix_inputs=graph_config.prefix_branches)
        items.append(Graph.branch(*branches, merge=merge))

    items.extend(_build_chain(graph_config.after))
    if not items:
        raise ValueError("Graph configuration contains no operators")

    graph = Graph.chain(*items)
    logger.debug(f"Built {graph}")
    return graph


def build_learner(learner_config: LearnerConfig) -> BaseLearner:
    """Build a Learner, wrapped in a GraphLearner when a graph is configured."""
    learner = Learner(
        learner_config.key,
        id=learner_config.id,
        predict_type=learner_config.predict_type,
        **learner_config.params,
    )
    if learner_config.graph is None:
        return learner
    return GraphLearner(build_graph(learner_config.graph), learner)
