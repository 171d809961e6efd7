"""Data I/O manager — persist sorted fragment sequences.

Saves an ordered fragment sequence so that it can be inspected or
re-rendered without rebuilding the tree.

File layout under output_dir/:
    fragments.npz   — vertices (V, 3), offsets (F + 1,), anchors (F,),
                      view_direction (3,)
    metadata.json   — splitter stats and run parameters (JSON)

Fragment ``i`` owns ``vertices[offsets[i]:offsets[i + 1]]``.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np

from core_engine.fragments import Fragment, emit_fragments
from core_engine.geometry import Polygon

logger = logging.getLogger(__name__)


def save_fragments(
    output_dir: Path | str,
    fragments: tuple[Fragment, ...],
    view_direction: np.ndarray,
    metadata: dict | None = None,
) -> list[Path]:
    """Save a fragment sequence to disk as NumPy arrays + JSON.

    Anchors are stored as int64, so only integer anchors round-trip.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    fragments : tuple[Fragment, ...]
        Fragments in draw order.
    view_direction : np.ndarray
        View direction the sequence was sorted for. Shape: (3,).
    metadata : dict, optional
        Extra metadata (splitter stats, scene path, ...).

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    counts = np.array([f.polygon.num_vertices for f in fragments], dtype=np.int64)
    offsets = np.zeros(len(fragments) + 1, dtype=np.int64)
    offsets[1:] = np.cumsum(counts)
    if fragments:
        vertices = np.concatenate([f.vertices for f in fragments], axis=0)
    else:
        vertices = np.zeros((0, 3), dtype=np.float64)
    anchors = np.array([int(f.anchor) for f in fragments], dtype=np.int64)

    saved: list[Path] = []

    npz_path = output_dir / "fragments.npz"
    np.savez_compressed(
        npz_path,
        vertices=vertices,
        offsets=offsets,
        anchors=anchors,
        view_direction=np.asarray(view_direction, dtype=np.float64),
    )
    saved.append(npz_path)
    logger.debug("Saved fragments.npz: %d fragments, %d vertices", len(fragments), len(vertices))

    meta_path = output_dir / "metadata.json"
    safe_meta = _sanitize_for_json(dict(metadata or {}, num_fragments=len(fragments)))
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(safe_meta, f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info("Saved %d fragments to %s", len(fragments), output_dir)
    return saved


def load_fragments(
    output_dir: Path | str,
) -> tuple[tuple[Fragment, ...], np.ndarray, dict]:
    """Load a previously saved fragment sequence.

    Each fragment's plane is re-derived from its vertices.

    Returns
    -------
    fragments : tuple[Fragment, ...]
        Fragments in saved draw order.
    view_direction : np.ndarray
        Stored view direction. Shape: (3,).
    metadata : dict
        Stored metadata (empty if the JSON file is missing).

    Raises
    ------
    FileNotFoundError
        If the directory or ``fragments.npz`` is missing.
    """
    output_dir = Path(output_dir)
    npz_path = output_dir / "fragments.npz"
    if not npz_path.exists():
        raise FileNotFoundError(f"Fragment archive not found: {npz_path}")

    with np.load(npz_path) as npz:
        vertices = npz["vertices"]
        offsets = npz["offsets"]
        anchors = npz["anchors"]
        view_direction = npz["view_direction"]

    polygons = [
        Polygon.from_points(vertices[offsets[i]:offsets[i + 1]], anchor=int(anchors[i]))
        for i in range(len(anchors))
    ]

    meta_path = output_dir / "metadata.json"
    if meta_path.exists():
        with open(meta_path, "r", encoding="utf-8") as f:
            metadata = json.load(f)
    else:
        logger.warning("Missing file: %s", meta_path)
        metadata = {}

    logger.info("Loaded %d fragments from %s", len(polygons), output_dir)
    return emit_fragments(polygons), view_direction, metadata


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types and other non-JSON types to Python natives."""
    if isinstance(obj, dict):
        return {str(k): _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, Path):
        return str(obj)
    return obj
