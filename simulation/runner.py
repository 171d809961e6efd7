"""Splitter session — rebuild-on-change, then sort per frame.

Orchestrates the full pipeline for an application loop:
1. Scene records → polygon builder → BSP splitter (reset + re-add)
2. Per frame: view direction → ordered fragment sequence
3. Optionally poll a scene file and rebuild when it changes

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
The session owns its splitter. A rebuild always runs to completion before
``render_frame`` can observe the tree, because both are ordinary method
calls on the one owner; no locking is involved. Sharing a session across
threads requires external serialization.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from core_engine.bsp import BspSplitter, normalize_view
from core_engine.constants import PlaneSplitConfig, default_config
from core_engine.fragments import Fragment
from data_ingestion.polygon_builder import BuildSummary, build_polygons
from data_ingestion.scene_loader import PlaneRecord, SceneWatcher

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result Containers
# ---------------------------------------------------------------------------


@dataclass
class FrameResult:
    """Output of one sorted frame.

    Attributes
    ----------
    frame_id : int
        Monotonic frame counter.
    view_direction : np.ndarray
        Unit view direction used. Shape: (3,).
    fragments : tuple[Fragment, ...]
        Fragments in back-to-front order.
    wall_time_s : float
        Time spent in ``sort``.
    """

    frame_id: int
    view_direction: np.ndarray
    fragments: tuple[Fragment, ...]
    wall_time_s: float


@dataclass
class RebuildResult:
    """Outcome of a tree rebuild.

    Attributes
    ----------
    summary : BuildSummary
        Built, skipped and flagged records.
    stats : dict[str, int]
        Splitter counters after the rebuild.
    wall_time_s : float
        Time spent building and inserting.
    """

    summary: BuildSummary
    stats: dict[str, int] = field(default_factory=dict)
    wall_time_s: float = 0.0


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SplitterSession:
    """Owns a splitter and keeps it in sync with a scene.

    Parameters
    ----------
    config : PlaneSplitConfig, optional
        Full configuration. Defaults to the built-in values.
    """

    def __init__(self, config: PlaneSplitConfig | None = None) -> None:
        self._config = config or default_config()
        self._splitter = BspSplitter.from_config(self._config.splitter)
        self._num_source_polygons = 0
        self._num_records = 0
        self._frame_id = 0

        logger.info(
            "SplitterSession initialized: epsilon=%.1e, anisotropy=%s",
            self._config.splitter.epsilon,
            self._config.builder.anisotropic_scale_policy,
        )

    @property
    def splitter(self) -> BspSplitter:
        return self._splitter

    @property
    def num_source_polygons(self) -> int:
        """Number of polygons built from the current scene (before splitting)."""
        return self._num_source_polygons

    @property
    def num_records(self) -> int:
        """Number of scene records in the last rebuild, skipped ones included.

        Anchors are record indices, so this is the anchor range.
        """
        return self._num_records

    def rebuild(self, records: Sequence[PlaneRecord]) -> RebuildResult:
        """Reset the tree and insert every buildable record, in order."""
        wall_start = time.perf_counter()

        summary = build_polygons(
            ((r.transform, r.extent, r.anchor) for r in records),
            self._config.builder,
        )
        self._splitter.reset()
        for polygon in summary.polygons:
            self._splitter.add(polygon)
        self._num_source_polygons = len(summary.polygons)
        self._num_records = len(records)

        stats = self._splitter.stats()
        wall = time.perf_counter() - wall_start
        logger.info(
            "Tree rebuilt: %d polygons → %d fragments (%d splits, %d nodes, depth %d) in %.3f s",
            len(summary.polygons),
            stats["num_polygons"],
            stats["num_splits"],
            stats["num_nodes"],
            stats["depth"],
            wall,
        )
        return RebuildResult(summary=summary, stats=stats, wall_time_s=wall)

    def update(self, watcher: SceneWatcher) -> RebuildResult | None:
        """Rebuild if the watched scene changed and parsed; otherwise keep the tree."""
        records = watcher.poll()
        if records is None:
            return None
        return self.rebuild(records)

    def render_frame(self, view_direction: np.ndarray) -> FrameResult:
        """Sort the current tree for ``view_direction``."""
        view = normalize_view(view_direction)

        wall_start = time.perf_counter()
        fragments = self._splitter.sort(view)
        wall = time.perf_counter() - wall_start

        result = FrameResult(
            frame_id=self._frame_id,
            view_direction=view,
            fragments=fragments,
            wall_time_s=wall,
        )
        self._frame_id += 1
        logger.debug("Frame %d: %d fragments in %.4f s", result.frame_id, len(fragments), wall)
        return result
