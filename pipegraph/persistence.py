"""
Saving and loading trained learners with joblib.

Next to the joblib file a small JSON sidecar records what was saved, so a
model directory can be inspected without unpickling anything. The sidecar
also lists the feature types the model was trained on.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import joblib

from .learners import BaseLearner, GraphLearner

logger = logging.getLogger(__name__)


def _metadata_path(path: Path) -> Path:
    return path.with_suffix(path.suffix + ".json")


def save_learner(
    learner: BaseLearner,
    path: Union[str, Path],
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """
    Persist a learner (trained or not) to ``path``.

    Args:
        learner: Learner, GraphLearner or AutoTuner to save
        path: Target file, conventionally ``*.joblib``
        metadata: Extra JSON-serializable information for the sidecar file

    Returns:
        Path of the written joblib file
    """
    if not isinstance(learner, BaseLearner):
        raise TypeError(f"Expected a learner, got {type(learner).__name__}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(learner, path)

    from . import __version__

    sidecar = {
        "learner_id": learner.id,
        "learner_class": type(learner).__name__,
        "task_type": learner.task_type.value,
        "trained": learner.is_trained,
        "created_at": datetime.now().isoformat(),
        "pipegraph_version": __version__,
        "feature_info": learner.feature_info,
    }
    if isinstance(learner, GraphLearner):
        sidecar["operators"] = learner.graph.ids
    if metadata:
        sidecar["metadata"] = metadata

    _metadata_path(path).write_text(json.dumps(sidecar, indent=2, default=str))
    logger.info(f"Saved learner '{learner.id}' to {path}")
    return path


def load_learner(path: Union[str, Path]) -> BaseLearner:
    """Load a learner saved with ``save_learner``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"No saved learner at {path}")

    learner = joblib.load(path)
    if not isinstance(learner, BaseLearner):
        raise TypeError(f"{path} does not contain a learner (found {type(learner).__name__})")

    logger.info(f"Loaded learner '{learner.id}' from {path}")
    return learner


def load_metadata(path: Union[str, Path]) -> Dict[str, Any]:
    """Read the JSON sidecar written next to a saved learner."""
    metadata_path = _metadata_path(Path(path))
    with open(metadata_path, "r") as f:
        return json.load(f)
