"""Loading of versioned memory-model parameter sets from YAML files.

A parameter file looks like::

    version: fsrs-6-refit-2026-03
    weights: [0.212, 1.2931, ...]   # 21 floats
    desired_retention: 0.9
    maximum_interval: 36500
    learning_steps_minutes: [1, 10]
    relearning_steps_minutes: [10]

Only `version` and `weights` are required.
"""

import logging
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from spacedeck.domain.constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_LEARNING_STEPS_MINUTES,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_RELEARNING_STEPS_MINUTES,
)
from spacedeck.domain.scheduling.models import SchedulingParameters

logger = logging.getLogger(__name__)


def _steps(minutes: Sequence[float]) -> tuple[timedelta, ...]:
    return tuple(timedelta(minutes=float(m)) for m in minutes)


def parameters_from_mapping(data: dict[str, Any]) -> SchedulingParameters:
    """Build SchedulingParameters from a plain mapping (parsed YAML)."""
    if "version" not in data or "weights" not in data:
        raise ValueError("Parameter set needs both 'version' and 'weights'")

    return SchedulingParameters(
        version=str(data["version"]),
        weights=tuple(float(w) for w in data["weights"]),
        desired_retention=float(data.get("desired_retention", DEFAULT_DESIRED_RETENTION)),
        maximum_interval=int(data.get("maximum_interval", DEFAULT_MAXIMUM_INTERVAL)),
        learning_steps=_steps(data.get("learning_steps_minutes", DEFAULT_LEARNING_STEPS_MINUTES)),
        relearning_steps=_steps(
            data.get("relearning_steps_minutes", DEFAULT_RELEARNING_STEPS_MINUTES)
        ),
    )


def load_parameters(path: Path) -> SchedulingParameters:
    """Read a parameter set from a YAML file."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    params = parameters_from_mapping(data)
    logger.info(f"Loaded scheduling parameters '{params.version}' from {path}")
    return params


def _minutes(steps: Sequence[timedelta]) -> str:
    return "/".join(f"{s.total_seconds() / 60:g}" for s in steps)


def build_parameters(
    parameters_file: Path | None = None,
    desired_retention: float | None = None,
    maximum_interval: int | None = None,
    learning_steps_minutes: Sequence[float] | None = None,
    relearning_steps_minutes: Sequence[float] | None = None,
) -> SchedulingParameters:
    """
    Resolve the active parameter set.

    Starts from the file (or the built-in default vector) and applies any
    explicit overrides on top. Overrides that change the set are appended to
    the version, e.g. ``fsrs-6-default+retention=0.7,relearn=5``, so review
    events stay traceable to the exact parameters that scheduled them.
    """
    base = load_parameters(parameters_file) if parameters_file else SchedulingParameters()

    values: dict[str, Any] = {
        "desired_retention": base.desired_retention,
        "maximum_interval": base.maximum_interval,
        "learning_steps": base.learning_steps,
        "relearning_steps": base.relearning_steps,
    }
    tags: list[str] = []
    if desired_retention is not None and desired_retention != base.desired_retention:
        values["desired_retention"] = desired_retention
        tags.append(f"retention={desired_retention:g}")
    if maximum_interval is not None and maximum_interval != base.maximum_interval:
        values["maximum_interval"] = maximum_interval
        tags.append(f"max={maximum_interval}")
    if learning_steps_minutes is not None:
        steps = _steps(learning_steps_minutes)
        if steps != base.learning_steps:
            values["learning_steps"] = steps
            tags.append(f"learn={_minutes(steps)}")
    if relearning_steps_minutes is not None:
        steps = _steps(relearning_steps_minutes)
        if steps != base.relearning_steps:
            values["relearning_steps"] = steps
            tags.append(f"relearn={_minutes(steps)}")

    if not tags:
        return base

    version = f"{base.version}+{','.join(tags)}"
    logger.info(f"Scheduling parameters overridden: {version}")
    return SchedulingParameters(version=version, weights=base.weights, **values)
