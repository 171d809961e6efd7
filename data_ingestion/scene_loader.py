"""Scene description loader — YAML plane sets for the splitter.

Parses a scene file into :class:`PlaneRecord` tuples, the only input the
polygon builder accepts. Malformed records are rejected here and never reach
the core. :class:`SceneWatcher` re-reads the file when its modification
time changes, so the caller can rebuild the tree on edit.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

File Format
-----------
A list of plane records, either at the top level or under ``planes:``.
Each record is one of::

    {pos: [x, y, z], rot: [rx, ry, rz], scale: s, extent: [w, h]}
    {matrix: {x: [4 floats], y: [4 floats], z: [4 floats]}, extent: [w, h]}

``rot`` is Euler XYZ in degrees; ``scale`` defaults to 1 and ``rot`` to zero.
In the matrix form the first three components of ``x``, ``y`` and ``z`` are the
images of the local axes and the fourth components are the translation.
The record's position in the list is its anchor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NamedTuple

import numpy as np
import yaml

from data_ingestion.polygon_builder import (
    ComponentTransform,
    MatrixTransform,
    PolygonBuildError,
    Transform,
)

logger = logging.getLogger(__name__)


class SceneParseError(ValueError):
    """The scene description cannot be parsed into plane records."""


class PlaneRecord(NamedTuple):
    """One scene plane: ``(transform, extent, anchor)``."""

    transform: Transform
    extent: tuple[float, float]
    anchor: int


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _floats(value: Any, size: int, where: str) -> list[float]:
    if not isinstance(value, (list, tuple)) or len(value) != size:
        raise SceneParseError(f"{where}: expected a list of {size} numbers, got {value!r}")
    try:
        out = [float(v) for v in value]
    except (TypeError, ValueError) as e:
        raise SceneParseError(f"{where}: non-numeric component in {value!r}") from e
    if not all(np.isfinite(out)):
        raise SceneParseError(f"{where}: non-finite component in {value!r}")
    return out


def _parse_record(raw: Any, index: int) -> PlaneRecord:
    where = f"plane [{index}]"
    if not isinstance(raw, dict):
        raise SceneParseError(f"{where}: expected a mapping, got {type(raw).__name__}")
    if "extent" not in raw:
        raise SceneParseError(f"{where}: missing 'extent'")
    extent = _floats(raw["extent"], 2, f"{where}.extent")

    has_matrix = "matrix" in raw
    has_component = "pos" in raw
    if has_matrix == has_component:
        raise SceneParseError(f"{where}: needs exactly one of 'pos' or 'matrix'")

    try:
        if has_matrix:
            m = raw["matrix"]
            if not isinstance(m, dict):
                raise SceneParseError(f"{where}.matrix: expected a mapping with x, y, z")
            transform: Transform = MatrixTransform(
                x=_floats(m.get("x"), 4, f"{where}.matrix.x"),
                y=_floats(m.get("y"), 4, f"{where}.matrix.y"),
                z=_floats(m.get("z"), 4, f"{where}.matrix.z"),
            )
        else:
            scale = raw.get("scale", 1.0)
            if isinstance(scale, bool) or not isinstance(scale, (int, float)):
                raise SceneParseError(f"{where}.scale: expected a number, got {scale!r}")
            transform = ComponentTransform(
                position=_floats(raw["pos"], 3, f"{where}.pos"),
                rotation_deg=_floats(raw.get("rot", [0.0, 0.0, 0.0]), 3, f"{where}.rot"),
                scale=float(scale),
            )
    except PolygonBuildError as e:
        raise SceneParseError(f"{where}: {e}") from e

    return PlaneRecord(transform=transform, extent=(extent[0], extent[1]), anchor=index)


def parse_scene(text: str) -> list[PlaneRecord]:
    """Parse scene YAML text into plane records.

    Raises
    ------
    SceneParseError
        On YAML syntax errors or any malformed record.
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SceneParseError(f"Invalid YAML: {e}") from e

    if isinstance(raw, dict):
        if "planes" not in raw:
            raise SceneParseError("Scene mapping has no 'planes' key")
        raw = raw["planes"]
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise SceneParseError(f"Scene must be a list of planes, got {type(raw).__name__}")

    return [_parse_record(item, i) for i, item in enumerate(raw)]


def load_scene(scene_path: str | Path) -> list[PlaneRecord]:
    """Read and parse a scene description file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    SceneParseError
        If the contents are malformed or not valid UTF-8.
    """
    scene_path = Path(scene_path)
    if not scene_path.exists():
        raise FileNotFoundError(f"Scene description not found: {scene_path}")

    with open(scene_path, "r", encoding="utf-8") as f:
        try:
            text = f.read()
        except UnicodeDecodeError as e:
            raise SceneParseError(f"Scene file is not valid UTF-8: {e}") from e
    records = parse_scene(text)

    logger.info("Loaded %d plane records from %s", len(records), scene_path)
    return records


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------


@dataclass
class SceneWatcher:
    """Reload a scene file whenever its modification time changes.

    Attributes
    ----------
    path : Path
        Scene description file.
    """

    path: Path
    _last_mtime: int | None = None

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    def poll(self) -> list[PlaneRecord] | None:
        """Return fresh records if the file changed and parsed, else None.

        A parse failure is logged and swallowed so that the caller keeps
        rendering the previous scene. The failing modification time is still
        consumed; the file is retried on its next edit.
        """
        try:
            mtime = self.path.stat().st_mtime_ns
        except FileNotFoundError:
            logger.error("Scene description not found: %s", self.path)
            return None

        if mtime == self._last_mtime:
            return None
        self._last_mtime = mtime

        try:
            return load_scene(self.path)
        except FileNotFoundError:
            logger.error("Scene description vanished while reloading: %s", self.path)
            return None
        except SceneParseError as e:
            logger.error("Unable to parse plane set: %s", e)
            return None

    def invalidate(self) -> None:
        """Force the next :meth:`poll` to reload."""
        self._last_mtime = None
