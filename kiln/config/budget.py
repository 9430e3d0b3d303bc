"""
Capacity Budget — derive per-image byte budgets from total storage.

The gallery has a fixed storage allowance shared by every future
submission. Each submission gets an equal slice (with headroom), split
90/10 between the main image and its thumbnail.

## Environment Variables

    KILN_CONFIG='{"max_library_bytes": 5e9, "expected_max_submissions": 3000}'

or individually:

    KILN_MAX_LIBRARY_BYTES, KILN_EXPECTED_MAX_SUBMISSIONS, KILN_SAFETY,
    KILN_MAIN_SHARE, KILN_IMAGE_MAX_EDGE, KILN_THUMB_MAX_EDGE

Values from KILN_CONFIG win; individual vars fill what it leaves out.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict

import yaml

from ..imaging.models import CompressionRequest

logger = logging.getLogger(__name__)

MASTER_ENV_VAR = "KILN_CONFIG"

ENV_VARS: Dict[str, str] = {
    "max_library_bytes": "KILN_MAX_LIBRARY_BYTES",
    "expected_max_submissions": "KILN_EXPECTED_MAX_SUBMISSIONS",
    "safety": "KILN_SAFETY",
    "main_share": "KILN_MAIN_SHARE",
    "image_max_long_edge": "KILN_IMAGE_MAX_EDGE",
    "thumb_max_long_edge": "KILN_THUMB_MAX_EDGE",
}


def _to_int(value: Any) -> int:
    # Accept "5e9" as well as "5000000000"
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return int(number)


@dataclass(frozen=True)
class CapacitySettings:
    """Storage capacity and derivative size limits."""

    max_library_bytes: int = 5_000_000_000   # 5 GB (decimal)
    expected_max_submissions: int = 3000
    safety: float = 0.85                     # 15% headroom
    main_share: float = 0.90                 # rest goes to the thumbnail
    image_max_long_edge: int = 1600          # px
    thumb_max_long_edge: int = 480           # px

    def __post_init__(self) -> None:
        if self.max_library_bytes <= 0:
            raise ValueError("max_library_bytes must be positive")
        if self.expected_max_submissions <= 0:
            raise ValueError("expected_max_submissions must be positive")
        if not 0 < self.safety <= 1:
            raise ValueError("safety must be in (0, 1]")
        if not 0 < self.main_share < 1:
            raise ValueError("main_share must be in (0, 1)")
        if self.image_max_long_edge <= 0 or self.thumb_max_long_edge <= 0:
            raise ValueError("max long edges must be positive")

    @property
    def per_submission_budget(self) -> int:
        return math.floor(
            self.max_library_bytes * self.safety / self.expected_max_submissions
        )

    @property
    def main_budget_bytes(self) -> int:
        return math.floor(self.per_submission_budget * self.main_share)

    @property
    def thumb_budget_bytes(self) -> int:
        return self.per_submission_budget - self.main_budget_bytes

    def main_request(self) -> CompressionRequest:
        edge = self.image_max_long_edge
        return CompressionRequest(
            max_width=edge, max_height=edge, target_bytes=self.main_budget_bytes
        )

    def thumb_request(self) -> CompressionRequest:
        edge = self.thumb_max_long_edge
        return CompressionRequest(
            max_width=edge, max_height=edge, target_bytes=self.thumb_budget_bytes
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_library_bytes": self.max_library_bytes,
            "expected_max_submissions": self.expected_max_submissions,
            "safety": self.safety,
            "main_share": self.main_share,
            "image_max_long_edge": self.image_max_long_edge,
            "thumb_max_long_edge": self.thumb_max_long_edge,
            "per_submission_budget": self.per_submission_budget,
            "main_budget_bytes": self.main_budget_bytes,
            "thumb_budget_bytes": self.thumb_budget_bytes,
        }


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "max_library_bytes": _to_int,
    "expected_max_submissions": _to_int,
    "safety": float,
    "main_share": float,
    "image_max_long_edge": _to_int,
    "thumb_max_long_edge": _to_int,
}


def _coerce(values: Dict[str, Any], source: str) -> Dict[str, Any]:
    """Convert known keys, dropping (and logging) anything invalid."""
    out: Dict[str, Any] = {}
    for name, convert in _CONVERTERS.items():
        raw = values.get(name, values.get(ENV_VARS[name]))
        if raw is None or raw == "":
            continue
        try:
            out[name] = convert(raw)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Ignoring invalid {name}={raw!r} from {source}")
    return out


def _build(values: Dict[str, Any], source: str) -> CapacitySettings:
    try:
        return replace(CapacitySettings(), **values)
    except ValueError as e:
        logger.error(f"Invalid capacity settings from {source}: {e}; using defaults")
        return CapacitySettings()


def load_settings() -> CapacitySettings:
    """
    Load capacity settings from the environment.

    Priority:
    1. KILN_CONFIG (master JSON)
    2. Individual KILN_* variables
    3. Defaults
    """
    values: Dict[str, Any] = {}

    master = os.environ.get(MASTER_ENV_VAR)
    if master:
        try:
            data = json.loads(master)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid {MASTER_ENV_VAR} JSON: {e}")
        else:
            if isinstance(data, dict):
                values = _coerce(data, MASTER_ENV_VAR)
                logger.info(f"Loaded capacity settings from {MASTER_ENV_VAR}")
            else:
                logger.error(f"{MASTER_ENV_VAR} must be a JSON object")

    env_values = _coerce(
        {env: os.environ.get(env) for env in ENV_VARS.values()}, "environment"
    )
    for name, value in env_values.items():
        values.setdefault(name, value)

    return _build(values, "environment")


def load_settings_file(path: Path) -> CapacitySettings:
    """Load capacity settings from a YAML file (same keys as KILN_CONFIG)."""
    with Path(path).open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
    unknown = set(data) - {f.name for f in fields(CapacitySettings)}
    if unknown:
        logger.warning(f"{path}: ignoring unknown keys {sorted(unknown)}")
    return _build(_coerce(data, str(path)), str(path))
