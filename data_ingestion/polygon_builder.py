"""Polygon builder — transform + rectangular extent → world-space quad.

Turns each scene plane record into a 4-vertex convex polygon ready for the
BSP splitter. The transform is a sum type resolved here, once, so the rest
of the pipeline only ever sees polygons.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
The canonical rectangle of half-extent (w, h) lies in the local XY plane
with vertex order

    3 (-w, +h) ------- 2 (+w, +h)
       |                  |
    0 (-w, -h) ------- 1 (+w, -h)

which winds counter-clockwise around +Z, so an untransformed rectangle has
normal +Z. Transforms map points as ``p' = M p + t``:

- ``ComponentTransform``: ``M = s · Rx(rx) · Ry(ry) · Rz(rz)`` (degrees).
- ``MatrixTransform``: ``x``, ``y``, ``z`` hold the columns of ``M`` (the
  images of the local axes) with ``t`` in their fourth components.

For the matrix form, the per-axis scale is the length of each basis column
of ``M``. If the three lengths disagree beyond a relative tolerance the
transform is anisotropic; what happens then is governed by
``BuilderConfig.anisotropic_scale_policy``:

- ``average``: warn, replace ``M`` by ``mean(scale) · R`` where ``R`` is the
  rotation closest to the column-normalized matrix (polar decomposition).
- ``reject``: raise :class:`PolygonBuildError`.
- ``keep``: warn, use ``M`` unchanged (still affine, so the quad stays
  planar and convex).
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np

from core_engine.constants import BuilderConfig
from core_engine.geometry import Plane, Polygon, polygon_area

logger = logging.getLogger(__name__)

# Canonical rectangle corners in units of (w, h), counter-clockwise about +Z.
_RECT_CORNERS: np.ndarray = np.array(
    [[-1.0, -1.0], [1.0, -1.0], [1.0, 1.0], [-1.0, 1.0]], dtype=np.float64
)


class PolygonBuildError(ValueError):
    """A plane record cannot be turned into a valid polygon."""


# ---------------------------------------------------------------------------
# Transform sum type
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ComponentTransform:
    """Position, Euler XYZ rotation in degrees, uniform scale."""

    position: np.ndarray
    rotation_deg: np.ndarray
    scale: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _vec(self.position, 3, "pos"))
        object.__setattr__(self, "rotation_deg", _vec(self.rotation_deg, 3, "rot"))
        object.__setattr__(self, "scale", float(self.scale))


@dataclass(frozen=True, eq=False)
class MatrixTransform:
    """Explicit affine transform given by its transformed basis axes.

    ``x[:3]``, ``y[:3]`` and ``z[:3]`` are the images of the local X, Y and
    Z axes, i.e. the columns of ``M``. The fourth components form the
    translation ``t = (x[3], y[3], z[3])``.

    Attributes
    ----------
    x, y, z : np.ndarray
        Basis column plus one translation component each. Shape: (4,) each.
    """

    x: np.ndarray
    y: np.ndarray
    z: np.ndarray

    def __post_init__(self) -> None:
        for name in ("x", "y", "z"):
            object.__setattr__(self, name, _vec(getattr(self, name), 4, name))

    @classmethod
    def from_array(cls, matrix: np.ndarray) -> MatrixTransform:
        """Build from a 3×4 ``[M | t]`` or a 4×4 affine matrix.

        Raises
        ------
        PolygonBuildError
            If the array has another shape, or is a 4×4 whose last row is not
            ``(0, 0, 0, 1)`` (projective transforms are not supported).
        """
        m = np.asarray(matrix, dtype=np.float64)
        if m.shape == (4, 4):
            if not np.allclose(m[3], (0.0, 0.0, 0.0, 1.0)):
                raise PolygonBuildError(f"Projective matrix not supported, last row {m[3]}")
            m = m[:3]
        if m.shape != (3, 4):
            raise PolygonBuildError(f"Matrix must be 3x4 or 4x4, got {m.shape}")
        return cls(
            x=np.append(m[:, 0], m[0, 3]),
            y=np.append(m[:, 1], m[1, 3]),
            z=np.append(m[:, 2], m[2, 3]),
        )

    @property
    def linear(self) -> np.ndarray:
        """The 3×3 linear part ``M`` (columns are the transformed axes)."""
        return np.column_stack([self.x[:3], self.y[:3], self.z[:3]])

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.x[3], self.y[3], self.z[3]])

    def as_array(self) -> np.ndarray:
        """The 3×4 affine matrix ``[M | t]``."""
        return np.column_stack([self.linear, self.translation])


Transform = Union[ComponentTransform, MatrixTransform]


def _vec(value: Any, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.shape != (size,):
        raise PolygonBuildError(f"'{name}' must have {size} components, got {arr.shape[0]}")
    return arr


# ---------------------------------------------------------------------------
# Transform resolution
# ---------------------------------------------------------------------------


def euler_xyz_matrix(rotation_deg: np.ndarray) -> np.ndarray:
    """Rotation matrix ``Rx · Ry · Rz`` for Euler angles in degrees."""
    rx, ry, rz = np.radians(np.asarray(rotation_deg, dtype=np.float64))
    cx, sx = np.cos(rx), np.sin(rx)
    cy, sy = np.cos(ry), np.sin(ry)
    cz, sz = np.cos(rz), np.sin(rz)

    r_x = np.array([[1.0, 0.0, 0.0], [0.0, cx, -sx], [0.0, sx, cx]])
    r_y = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    r_z = np.array([[cz, -sz, 0.0], [sz, cz, 0.0], [0.0, 0.0, 1.0]])
    return r_x @ r_y @ r_z


def recover_scale(linear: np.ndarray) -> np.ndarray:
    """Per-axis scale: the length of each basis column. Shape: (3,)."""
    return np.linalg.norm(linear, axis=0)


def is_anisotropic(scale3: np.ndarray, tolerance: float) -> bool:
    """True if the three scale magnitudes differ by more than ``tolerance`` (relative)."""
    reference = float(np.max(np.abs(scale3)))
    if reference == 0.0:
        return False
    return bool((np.max(scale3) - np.min(scale3)) > tolerance * reference)


def nearest_rotation(linear: np.ndarray) -> np.ndarray:
    """Closest orthogonal matrix to the column-normalized ``linear`` (polar decomposition)."""
    cols = linear / recover_scale(linear)
    u, _, vt = np.linalg.svd(cols)
    return u @ vt


def resolve_transform(
    transform: Transform,
    config: BuilderConfig,
    anchor: Hashable = None,
) -> tuple[np.ndarray, np.ndarray, bool]:
    """Resolve a transform to ``(M, t, flagged)``.

    Returns
    -------
    linear : np.ndarray
        3×3 linear part.
    translation : np.ndarray
        Translation. Shape: (3,).
    flagged : bool
        True if an anisotropic scale was detected.

    Raises
    ------
    PolygonBuildError
        If the transform is non-finite, singular, or anisotropic under the
        ``reject`` policy.
    """
    if isinstance(transform, ComponentTransform):
        if not np.isfinite(transform.scale) or transform.scale == 0.0:
            raise PolygonBuildError(f"Invalid scale {transform.scale} on plane [{anchor}]")
        linear = transform.scale * euler_xyz_matrix(transform.rotation_deg)
        translation = transform.position.copy()
        flagged = False
    elif isinstance(transform, MatrixTransform):
        linear = transform.linear
        translation = transform.translation
        scale3 = recover_scale(linear)
        if np.any(scale3 <= 0.0):
            raise PolygonBuildError(f"Zero basis column in matrix on plane [{anchor}]")
        flagged = is_anisotropic(scale3, config.anisotropy_tolerance)
        if flagged:
            policy = config.anisotropic_scale_policy
            if policy == "reject":
                raise PolygonBuildError(f"Bad scale {scale3} on plane [{anchor}]")
            logger.warning(
                "Bad scale %s on plane [%s] (policy=%s)", np.round(scale3, 6), anchor, policy
            )
            if policy == "average":
                linear = float(scale3.mean()) * nearest_rotation(linear)
    else:
        raise PolygonBuildError(f"Unknown transform type {type(transform).__name__}")

    if not (np.all(np.isfinite(linear)) and np.all(np.isfinite(translation))):
        raise PolygonBuildError(f"Non-finite transform on plane [{anchor}]")
    if abs(float(np.linalg.det(linear))) < 1e-12:
        raise PolygonBuildError(f"Singular transform on plane [{anchor}]")

    return linear, translation, flagged


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def build_polygon(
    transform: Transform,
    extent: Sequence[float],
    anchor: Hashable,
    config: BuilderConfig | None = None,
) -> Polygon:
    """Build the world-space quad for one plane record.

    Parameters
    ----------
    transform : ComponentTransform or MatrixTransform
        Placement of the rectangle.
    extent : sequence of float
        Half-width and half-height of the rectangle.
    anchor : Hashable
        Identifier carried by the polygon and every fragment split from it.
    config : BuilderConfig, optional
        Tolerances and anisotropy policy. Defaults to ``BuilderConfig()``.

    Returns
    -------
    Polygon
        Four vertices, canonical winding preserved.

    Raises
    ------
    PolygonBuildError
        For degenerate extents or unrecoverable transforms.
    """
    polygon, _ = _build(transform, extent, anchor, config or BuilderConfig())
    return polygon


def _build(
    transform: Transform,
    extent: Sequence[float],
    anchor: Hashable,
    config: BuilderConfig,
) -> tuple[Polygon, bool]:
    half = np.asarray(extent, dtype=np.float64).reshape(-1)
    if half.shape != (2,):
        raise PolygonBuildError(f"Extent must have 2 components, got {half.shape[0]}")
    if not np.all(np.isfinite(half)) or np.any(np.abs(half) <= config.min_half_extent):
        raise PolygonBuildError(f"Degenerate extent {half.tolist()} on plane [{anchor}]")

    linear, translation, flagged = resolve_transform(transform, config, anchor)

    local = np.zeros((4, 3), dtype=np.float64)
    local[:, :2] = _RECT_CORNERS * half
    world = local @ linear.T + translation

    # Scale collapses are caught here even when each input looked finite.
    area = float(polygon_area(world))
    if not np.isfinite(area) or area <= 4.0 * config.min_half_extent**2:
        raise PolygonBuildError(f"Zero-area polygon (area={area:.3g}) on plane [{anchor}]")

    try:
        plane = Plane.from_points(world[0], world[1], world[2])
    except ValueError as e:
        raise PolygonBuildError(f"Cannot derive plane on plane [{anchor}]: {e}") from e

    return Polygon(vertices=world, plane=plane, anchor=anchor), flagged


@dataclass
class BuildSummary:
    """Outcome of :func:`build_polygons`.

    Attributes
    ----------
    polygons : list[Polygon]
        Successfully built polygons, in input order.
    skipped : dict
        Anchor → error message for records that failed.
    flagged : list
        Anchors whose matrix transform had an anisotropic scale.
    """

    polygons: list[Polygon] = field(default_factory=list)
    skipped: dict[Hashable, str] = field(default_factory=dict)
    flagged: list[Hashable] = field(default_factory=list)


def build_polygons(
    records: Iterable[tuple[Transform, Sequence[float], Hashable]],
    config: BuilderConfig | None = None,
) -> BuildSummary:
    """Build polygons for a batch of ``(transform, extent, anchor)`` records.

    Failing records are logged and skipped; the rest are still built.
    """
    config = config or BuilderConfig()
    summary = BuildSummary()

    for transform, extent, anchor in records:
        try:
            polygon, flagged = _build(transform, extent, anchor, config)
        except PolygonBuildError as e:
            logger.warning("Skipping plane [%s]: %s", anchor, e)
            summary.skipped[anchor] = str(e)
            continue
        summary.polygons.append(polygon)
        if flagged:
            summary.flagged.append(anchor)

    logger.info(
        "Built %d polygons (%d skipped, %d with anisotropic scale)",
        len(summary.polygons),
        len(summary.skipped),
        len(summary.flagged),
    )
    return summary
