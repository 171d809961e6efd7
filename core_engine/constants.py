"""Numerical tolerances, builder policy, and configuration loader.

All tolerances used by the splitter and the polygon builder are loaded from
YAML configuration files. This module provides a typed, validated interface
to that configuration so that classification, interpolation and vertex
merging all agree on one epsilon.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults (used when a key is absent from the YAML file)
# ---------------------------------------------------------------------------

DEFAULT_EPSILON: float = 1e-5
DEFAULT_PARALLEL_EPSILON: float = 1e-6
DEFAULT_MIN_HALF_EXTENT: float = 1e-6
DEFAULT_ANISOTROPY_TOLERANCE: float = 1e-3

ANISOTROPY_POLICIES: tuple[str, ...] = ("average", "reject", "keep")


# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SplitterConfig:
    """BSP splitter tolerances.

    Attributes
    ----------
    epsilon : float
        Half-width of the band around a splitting plane inside which a vertex
        counts as lying on the plane. Also the merge distance for vertices
        produced by a cut.
    parallel_epsilon : float
        If ``|dot(plane_normal, view_direction)|`` is below this value the
        view is treated as parallel to the plane and the fixed
        front-then-back order is used.
    """

    epsilon: float = DEFAULT_EPSILON
    parallel_epsilon: float = DEFAULT_PARALLEL_EPSILON


@dataclass(frozen=True)
class BuilderConfig:
    """Polygon builder policy.

    Attributes
    ----------
    min_half_extent : float
        Half-extents at or below this value are rejected as degenerate.
    anisotropy_tolerance : float
        Relative tolerance between the three recovered scale magnitudes of a
        matrix transform.
    anisotropic_scale_policy : str
        ``'average'`` (warn, rebuild as rotation × mean scale), ``'reject'``
        (raise), or ``'keep'`` (warn, use the raw affine matrix).
    """

    min_half_extent: float = DEFAULT_MIN_HALF_EXTENT
    anisotropy_tolerance: float = DEFAULT_ANISOTROPY_TOLERANCE
    anisotropic_scale_policy: str = "average"


@dataclass(frozen=True)
class SceneConfig:
    """Scene description file settings.

    Attributes
    ----------
    path : str
        Default scene description file.
    poll_interval_s : float
        Delay between modification-time checks in watch mode [s].
    """

    path: str = "data/poly.yaml"
    poll_interval_s: float = 0.5


@dataclass(frozen=True)
class RenderConfig:
    """Preview renderer settings."""

    dpi: int = 150
    alpha: float = 0.85
    draw_edges: bool = True


@dataclass
class PlaneSplitConfig:
    """Top-level configuration loaded from YAML.

    Attributes
    ----------
    splitter : SplitterConfig
        BSP tolerances.
    builder : BuilderConfig
        Polygon builder policy.
    scene : SceneConfig
        Scene file settings.
    render : RenderConfig
        Preview renderer settings.
    """

    splitter: SplitterConfig
    builder: BuilderConfig
    scene: SceneConfig
    render: RenderConfig


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def default_config() -> PlaneSplitConfig:
    """Return the built-in configuration (no file access)."""
    return PlaneSplitConfig(
        splitter=SplitterConfig(),
        builder=BuilderConfig(),
        scene=SceneConfig(),
        render=RenderConfig(),
    )


def load_config(config_path: str | Path) -> PlaneSplitConfig:
    """Load and validate a configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    PlaneSplitConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If values are malformed or out of range.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    logger.info("Loading configuration from: %s", config_path)

    try:
        # --- Splitter tolerances ---
        spl = raw.get("splitter", {})
        splitter = SplitterConfig(
            epsilon=float(spl.get("epsilon", DEFAULT_EPSILON)),
            parallel_epsilon=float(spl.get("parallel_epsilon", DEFAULT_PARALLEL_EPSILON)),
        )

        # --- Builder policy ---
        bld = raw.get("builder", {})
        builder = BuilderConfig(
            min_half_extent=float(bld.get("min_half_extent", DEFAULT_MIN_HALF_EXTENT)),
            anisotropy_tolerance=float(
                bld.get("anisotropy_tolerance", DEFAULT_ANISOTROPY_TOLERANCE)
            ),
            anisotropic_scale_policy=str(bld.get("anisotropic_scale_policy", "average")),
        )

        # --- Scene file ---
        scn = raw.get("scene", {})
        scene = SceneConfig(
            path=str(scn.get("path", SceneConfig.path)),
            poll_interval_s=float(scn.get("poll_interval_s", SceneConfig.poll_interval_s)),
        )

        # --- Renderer ---
        rnd = raw.get("render", {})
        render = RenderConfig(
            dpi=int(rnd.get("dpi", RenderConfig.dpi)),
            alpha=float(rnd.get("alpha", RenderConfig.alpha)),
            draw_edges=bool(rnd.get("draw_edges", RenderConfig.draw_edges)),
        )
    except (TypeError, AttributeError) as e:
        raise ValueError(f"Malformed configuration in {config_path}: {e}") from e

    config = PlaneSplitConfig(
        splitter=splitter,
        builder=builder,
        scene=scene,
        render=render,
    )

    _validate_config(config)
    logger.info(
        "Configuration loaded: epsilon=%.1e, parallel_epsilon=%.1e, anisotropy=%s",
        splitter.epsilon,
        splitter.parallel_epsilon,
        builder.anisotropic_scale_policy,
    )

    return config


def _validate_config(config: PlaneSplitConfig) -> None:
    """Validate range constraints on configuration values.

    Raises
    ------
    ValueError
        If any value is invalid.
    """
    if config.splitter.epsilon <= 0:
        raise ValueError("Splitter epsilon must be positive.")
    if config.splitter.parallel_epsilon <= 0:
        raise ValueError("Parallel epsilon must be positive.")
    if config.builder.min_half_extent < 0:
        raise ValueError("Minimum half-extent cannot be negative.")
    if config.builder.anisotropy_tolerance <= 0:
        raise ValueError("Anisotropy tolerance must be positive.")
    if config.builder.anisotropic_scale_policy not in ANISOTROPY_POLICIES:
        raise ValueError(
            f"Anisotropic scale policy must be one of {ANISOTROPY_POLICIES}, "
            f"got {config.builder.anisotropic_scale_policy!r}"
        )
    if config.scene.poll_interval_s <= 0:
        raise ValueError("Scene poll interval must be positive.")
    if config.render.dpi <= 0:
        raise ValueError("Render DPI must be positive.")
    if not (0.0 < config.render.alpha <= 1.0):
        raise ValueError(f"Render alpha must be in (0, 1], got {config.render.alpha}")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)
