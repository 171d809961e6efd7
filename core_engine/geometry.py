"""Planes, convex polygons, and the per-vertex Numba kernels.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- A plane is stored as a unit normal ``n`` and an offset ``w`` so that the
  signed distance of a point ``p`` is ``n · p + w``. Positive distances are
  the plane's *front* half-space.
- Polygons are immutable. Vertex arrays are float64, shape (N, 3), and are
  flagged read-only after construction. Fragments produced by a split keep
  their parent's plane and anchor instead of re-deriving them from the cut
  vertices, so repeated splitting never drifts the plane.
- Inner loops over vertices are compiled with Numba ``@njit(cache=True)``.
  ``fastmath=False`` keeps the epsilon comparisons in the splitter
  well-defined.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)

# Normals whose length deviates from 1 by more than this are rejected.
_UNIT_TOLERANCE: float = 1e-6

# Smallest |cross| accepted when deriving a plane from three vertices.
_MIN_CROSS_NORM: float = 1e-12


# ===================================================================
# NUMBA KERNELS
# ===================================================================


@njit(cache=True, fastmath=False)
def signed_distances(
    points: np.ndarray,
    normal: np.ndarray,
    offset: float,
) -> np.ndarray:
    """Signed distance of every point to the plane ``n · p + w = 0``.

    Parameters
    ----------
    points : np.ndarray
        Points. Shape: (N, 3), dtype float64.
    normal : np.ndarray
        Unit plane normal. Shape: (3,).
    offset : float
        Plane offset ``w``.

    Returns
    -------
    np.ndarray
        Signed distances. Shape: (N,).
    """
    n = points.shape[0]
    out = np.empty(n, dtype=np.float64)
    for i in range(n):
        out[i] = (
            normal[0] * points[i, 0]
            + normal[1] * points[i, 1]
            + normal[2] * points[i, 2]
            + offset
        )
    return out


@njit(cache=True, fastmath=False)
def newell_vector(points: np.ndarray) -> np.ndarray:
    """Newell's area vector of a closed planar loop.

    The vector is parallel to the loop's normal (right-hand rule over the
    vertex order) and its length is twice the enclosed area.

    Parameters
    ----------
    points : np.ndarray
        Loop vertices in order. Shape: (N, 3).

    Returns
    -------
    np.ndarray
        Area vector. Shape: (3,).
    """
    n = points.shape[0]
    acc = np.zeros(3, dtype=np.float64)
    for i in range(n):
        j = (i + 1) % n
        acc[0] += points[i, 1] * points[j, 2] - points[i, 2] * points[j, 1]
        acc[1] += points[i, 2] * points[j, 0] - points[i, 0] * points[j, 2]
        acc[2] += points[i, 0] * points[j, 1] - points[i, 1] * points[j, 0]
    return acc


@njit(cache=True, fastmath=False)
def polygon_area(points: np.ndarray) -> float:
    """Area enclosed by a closed planar loop."""
    v = newell_vector(points)
    return 0.5 * np.sqrt(v[0] * v[0] + v[1] * v[1] + v[2] * v[2])


# ===================================================================
# PLANE
# ===================================================================


@dataclass(frozen=True, eq=False)
class Plane:
    """An oriented plane.

    Attributes
    ----------
    normal : np.ndarray
        Unit normal. Shape: (3,), dtype float64, read-only.
    offset : float
        Offset ``w`` in ``n · p + w = 0``.
    """

    normal: np.ndarray
    offset: float

    def __post_init__(self) -> None:
        normal = np.array(self.normal, dtype=np.float64).reshape(3)
        length = float(np.linalg.norm(normal))
        if not np.isfinite(length) or abs(length - 1.0) > _UNIT_TOLERANCE:
            raise ValueError(f"Plane normal must be unit length, got |n|={length}")
        if not np.isfinite(self.offset):
            raise ValueError(f"Plane offset must be finite, got {self.offset}")
        normal.setflags(write=False)
        object.__setattr__(self, "normal", normal)
        object.__setattr__(self, "offset", float(self.offset))

    @classmethod
    def from_points(cls, a: np.ndarray, b: np.ndarray, c: np.ndarray) -> Plane:
        """Plane through three points, oriented by ``(b - a) × (c - a)``.

        Raises
        ------
        ValueError
            If the points are collinear (within tolerance).
        """
        a = np.asarray(a, dtype=np.float64)
        cross = np.cross(np.asarray(b, dtype=np.float64) - a, np.asarray(c, dtype=np.float64) - a)
        norm = float(np.linalg.norm(cross))
        if not np.isfinite(norm) or norm < _MIN_CROSS_NORM:
            raise ValueError("Cannot derive a plane from collinear points.")
        normal = cross / norm
        return cls(normal=normal, offset=-float(np.dot(normal, a)))

    def signed_distance(self, point: np.ndarray) -> float:
        """Signed distance of a single point."""
        return float(np.dot(self.normal, point) + self.offset)

    def flipped(self) -> Plane:
        """Same plane with the opposite orientation."""
        return Plane(normal=-self.normal, offset=-self.offset)

    def __repr__(self) -> str:
        n = self.normal
        return f"Plane(normal=({n[0]:.4f}, {n[1]:.4f}, {n[2]:.4f}), offset={self.offset:.4f})"


# ===================================================================
# POLYGON
# ===================================================================


@dataclass(frozen=True, eq=False)
class Polygon:
    """An immutable convex planar polygon tagged with its source anchor.

    Attributes
    ----------
    vertices : np.ndarray
        Ordered loop vertices. Shape: (N, 3), N >= 3, dtype float64,
        read-only.
    plane : Plane
        Supporting plane. Its normal follows the vertex winding.
    anchor : Hashable
        Identifier of the source polygon, preserved through every split.
    """

    vertices: np.ndarray
    plane: Plane
    anchor: Hashable

    def __post_init__(self) -> None:
        vertices = np.array(self.vertices, dtype=np.float64)
        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ValueError(f"Polygon vertices must have shape (N, 3), got {vertices.shape}")
        if vertices.shape[0] < 3:
            raise ValueError(f"Polygon needs at least 3 vertices, got {vertices.shape[0]}")
        if not np.all(np.isfinite(vertices)):
            raise ValueError("Polygon vertices must be finite.")
        vertices.setflags(write=False)
        object.__setattr__(self, "vertices", vertices)

    @classmethod
    def from_points(cls, points: np.ndarray, anchor: Hashable) -> Polygon:
        """Build a polygon, deriving its plane from three of its vertices.

        The three vertices spanning the largest triangle with the first
        vertex are used, so a collinear leading triple does not fail.

        Raises
        ------
        ValueError
            If all vertices are collinear or the input is malformed.
        """
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 3 or pts.shape[0] < 3:
            raise ValueError(f"Polygon vertices must have shape (N>=3, 3), got {pts.shape}")

        best = (0.0, 1, 2)
        for j in range(1, pts.shape[0] - 1):
            cross = np.cross(pts[j] - pts[0], pts[j + 1] - pts[0])
            norm = float(np.linalg.norm(cross))
            if norm > best[0]:
                best = (norm, j, j + 1)

        plane = Plane.from_points(pts[0], pts[best[1]], pts[best[2]])
        return cls(vertices=pts, plane=plane, anchor=anchor)

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def area(self) -> float:
        """Enclosed area."""
        return float(polygon_area(self.vertices))

    @property
    def centroid(self) -> np.ndarray:
        """Vertex average (inside the polygon since it is convex)."""
        return self.vertices.mean(axis=0)

    def is_planar(self, epsilon: float) -> bool:
        """True if every vertex lies within ``epsilon`` of the plane."""
        d = signed_distances(self.vertices, self.plane.normal, self.plane.offset)
        return bool(np.all(np.abs(d) <= epsilon))

    def with_vertices(self, vertices: np.ndarray) -> Polygon:
        """Sub-polygon sharing this polygon's plane and anchor."""
        return Polygon(vertices=vertices, plane=self.plane, anchor=self.anchor)

    def __repr__(self) -> str:
        return (
            f"Polygon(anchor={self.anchor!r}, vertices={self.num_vertices}, "
            f"area={self.area:.6g}, {self.plane!r})"
        )
