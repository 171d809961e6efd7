"""Fragment packaging for the renderer.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable
from dataclasses import dataclass

import numpy as np

from core_engine.geometry import Polygon


@dataclass(frozen=True, eq=False)
class Fragment:
    """A polygon in draw order.

    Attributes
    ----------
    polygon : Polygon
        The (possibly split) polygon to draw.
    anchor : Hashable
        Anchor of the source polygon, used for coloring and debugging.
    index : int
        0-based emission index; lower indices are drawn first.
    """

    polygon: Polygon
    anchor: Hashable
    index: int

    @property
    def vertices(self) -> np.ndarray:
        return self.polygon.vertices


def emit_fragments(polygons: Iterable[Polygon]) -> tuple[Fragment, ...]:
    """Wrap polygons, in the order given, as a read-only fragment sequence."""
    return tuple(
        Fragment(polygon=poly, anchor=poly.anchor, index=i)
        for i, poly in enumerate(polygons)
    )
