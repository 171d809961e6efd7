"""Visualization module for sorted fragment sequences.

Generates preview figures using matplotlib:
- Painter's-algorithm render: fragments drawn in emission order, projected
  onto the image plane of the view direction, gray level by anchor
- Depth profile: mean fragment depth along the view direction versus
  emission index (non-increasing for a correct back-to-front order)

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for headless rendering

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import PolyCollection

from core_engine.fragments import Fragment

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color Configuration
# ---------------------------------------------------------------------------

_BACKGROUND = "#1a1a2e"
_EDGE_COLOR = "#e94560"
_DPI = 150


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def view_basis(view_direction: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Right-handed image basis ``(right, up, forward)`` for a view direction.

    ``forward`` is the normalized view direction. ``up`` is as close to +Z as
    possible (falling back to +Y when looking along Z).
    """
    forward = np.asarray(view_direction, dtype=np.float64)
    forward = forward / np.linalg.norm(forward)
    world_up = np.array([0.0, 0.0, 1.0])
    if abs(float(np.dot(forward, world_up))) > 0.99:
        world_up = np.array([0.0, 1.0, 0.0])
    right = np.cross(forward, world_up)
    right /= np.linalg.norm(right)
    up = np.cross(right, forward)
    return right, up, forward


def anchor_gray(anchor: int, num_anchors: int) -> float:
    """Gray level in (0, 1] for an anchor: ``(anchor + 1) / num_anchors``."""
    return min(1.0, (int(anchor) + 1) / max(1, num_anchors))


def _save(fig: plt.Figure, output_path: Path | str | None, dpi: int, label: str) -> None:
    if output_path is None:
        return
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi, facecolor=fig.get_facecolor())
    logger.info("%s saved: %s", label, output_path)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plot_fragments(
    fragments: tuple[Fragment, ...],
    view_direction: np.ndarray,
    num_anchors: int | None = None,
    title: str = "Painter's Order",
    output_path: Path | str | None = None,
    alpha: float = 0.85,
    draw_edges: bool = True,
    dpi: int = _DPI,
) -> plt.Figure:
    """Draw fragments back-to-front, orthographically projected.

    Parameters
    ----------
    fragments : tuple[Fragment, ...]
        Fragments in draw order.
    view_direction : np.ndarray
        Direction the viewer looks along. Shape: (3,).
    num_anchors : int, optional
        Number of source polygons (for gray levels). Default: max anchor + 1.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    alpha : float
        Fragment opacity.
    draw_edges : bool
        Outline each fragment, making the cuts visible.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    right, up, _ = view_basis(view_direction)
    if num_anchors is None:
        num_anchors = max((int(f.anchor) for f in fragments), default=0) + 1

    fig, ax = plt.subplots(1, 1, figsize=(8, 8), facecolor=_BACKGROUND)
    ax.set_facecolor(_BACKGROUND)

    if fragments:
        loops = [np.column_stack([f.vertices @ right, f.vertices @ up]) for f in fragments]
        grays = [anchor_gray(f.anchor, num_anchors) for f in fragments]
        collection = PolyCollection(
            loops,
            facecolors=[(g, g, g, alpha) for g in grays],
            edgecolors=_EDGE_COLOR if draw_edges else "none",
            linewidths=0.8,
        )
        # PolyCollection paints in list order: the painter's algorithm.
        ax.add_collection(collection)
        ax.autoscale_view()

    ax.set_xlabel("right", color="white")
    ax.set_ylabel("up", color="white")
    ax.set_title(
        f"{title} ({len(fragments)} fragments)", fontsize=14, fontweight="bold", color="white"
    )
    ax.set_aspect("equal")
    ax.tick_params(colors="white")
    for spine in ax.spines.values():
        spine.set_edgecolor("#444")

    fig.tight_layout()
    _save(fig, output_path, dpi, "Fragment render")

    plt.close(fig)
    return fig


def plot_depth_profile(
    fragments: tuple[Fragment, ...],
    view_direction: np.ndarray,
    title: str = "Fragment Depth vs. Emission Order",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot centroid depth along the view direction for each emission index."""
    _, _, forward = view_basis(view_direction)
    depths = np.array([float(f.polygon.centroid @ forward) for f in fragments])
    anchors = np.array([int(f.anchor) for f in fragments])

    fig, ax = plt.subplots(1, 1, figsize=(10, 4))
    if len(depths):
        ax.plot(np.arange(len(depths)), depths, color="#888", linewidth=1.0, zorder=1)
        scatter = ax.scatter(
            np.arange(len(depths)), depths, c=anchors, cmap="viridis", s=20, zorder=2
        )
        fig.colorbar(scatter, ax=ax, label="Anchor")
    ax.set_xlabel("Emission index")
    ax.set_ylabel("Centroid depth along view")
    ax.set_title(title)
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    _save(fig, output_path, dpi, "Depth profile")

    plt.close(fig)
    return fig


def generate_all_plots(
    fragments: tuple[Fragment, ...],
    view_direction: np.ndarray,
    output_dir: Path | str = "output",
    num_anchors: int | None = None,
    alpha: float = 0.85,
    draw_edges: bool = True,
    dpi: int = _DPI,
) -> list[Path]:
    """Generate the standard preview figures.

    Returns
    -------
    list[Path]
        Paths to saved figures.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    saved: list[Path] = []

    render_path = output_dir / "fragments.png"
    plot_fragments(
        fragments,
        view_direction,
        num_anchors=num_anchors,
        output_path=render_path,
        alpha=alpha,
        draw_edges=draw_edges,
        dpi=dpi,
    )
    saved.append(render_path)

    depth_path = output_dir / "depth_profile.png"
    plot_depth_profile(fragments, view_direction, output_path=depth_path, dpi=dpi)
    saved.append(depth_path)

    logger.info("Generated %d plots in %s", len(saved), output_dir)
    return saved
