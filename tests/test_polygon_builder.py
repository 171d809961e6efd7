"""Tests for the polygon builder (transform + extent → quad).

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from core_engine.constants import BuilderConfig
from data_ingestion.polygon_builder import (
    ComponentTransform,
    MatrixTransform,
    PolygonBuildError,
    build_polygon,
    build_polygons,
    euler_xyz_matrix,
    is_anisotropic,
    nearest_rotation,
    recover_scale,
    resolve_transform,
)


def _identity(position=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0), scale=1.0) -> ComponentTransform:
    return ComponentTransform(position=position, rotation_deg=rotation, scale=scale)


def _matrix(linear, translation=(0.0, 0.0, 0.0)) -> MatrixTransform:
    return MatrixTransform.from_array(np.column_stack([np.asarray(linear, dtype=float), translation]))


# ===================================================================
# COMPONENT TRANSFORM TESTS
# ===================================================================


class TestComponentTransform:
    """Position / Euler rotation / uniform scale."""

    def test_identity_quad(self) -> None:
        poly = build_polygon(_identity(), (1.0, 0.5), anchor=0)

        expected = np.array(
            [[-1.0, -0.5, 0.0], [1.0, -0.5, 0.0], [1.0, 0.5, 0.0], [-1.0, 0.5, 0.0]]
        )
        np.testing.assert_allclose(poly.vertices, expected, atol=1e-12)
        np.testing.assert_allclose(poly.plane.normal, [0.0, 0.0, 1.0], atol=1e-12)
        assert abs(poly.area - 2.0) < 1e-12
        assert poly.anchor == 0

    def test_rotation_about_x(self) -> None:
        """+90° about X turns the +Z normal into -Y."""
        poly = build_polygon(_identity(rotation=(90.0, 0.0, 0.0)), (0.5, 0.5), anchor=1)

        np.testing.assert_allclose(poly.plane.normal, [0.0, -1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(poly.vertices[:, 1], 0.0, atol=1e-12)
        np.testing.assert_allclose(poly.vertices[0], [-0.5, 0.0, -0.5], atol=1e-12)

    def test_rotation_about_y(self) -> None:
        poly = build_polygon(_identity(rotation=(0.0, 90.0, 0.0)), (0.5, 0.5), anchor=1)
        np.testing.assert_allclose(poly.plane.normal, [1.0, 0.0, 0.0], atol=1e-12)

    def test_position_and_scale(self) -> None:
        poly = build_polygon(_identity(position=(1.0, 2.0, 3.0), scale=2.0), (1.0, 0.5), anchor=0)

        np.testing.assert_allclose(poly.centroid, [1.0, 2.0, 3.0], atol=1e-12)
        assert abs(poly.area - 8.0) < 1e-12
        assert abs(poly.plane.offset + 3.0) < 1e-12

    def test_negative_scale_is_accepted(self) -> None:
        """A uniform -1 scale is a point reflection and still yields a valid quad."""
        poly = build_polygon(_identity(scale=-1.0), (1.0, 1.0), anchor=0)
        assert abs(poly.area - 4.0) < 1e-12
        assert poly.is_planar(1e-12)

    def test_euler_order(self) -> None:
        """Composite rotation equals Rx · Ry · Rz applied right to left."""
        r = euler_xyz_matrix(np.array([90.0, 90.0, 0.0]))
        # Ry maps +Z to +X; Rx leaves +X alone.
        np.testing.assert_allclose(r @ [0.0, 0.0, 1.0], [1.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(r.T @ r, np.eye(3), atol=1e-12)

    @pytest.mark.parametrize("scale", [0.0, float("nan"), float("inf")])
    def test_invalid_scale(self, scale: float) -> None:
        with pytest.raises(PolygonBuildError):
            build_polygon(_identity(scale=scale), (1.0, 1.0), anchor=0)

    def test_wrong_component_count(self) -> None:
        with pytest.raises(PolygonBuildError):
            ComponentTransform(position=(0.0, 0.0), rotation_deg=(0.0, 0.0, 0.0))


# ===================================================================
# MATRIX TRANSFORM TESTS
# ===================================================================


class TestMatrixTransform:
    """Explicit affine axes and scale recovery."""

    def test_rotation_with_translation(self) -> None:
        """90° about Z with a +X shift."""
        rz = [[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]
        poly = build_polygon(_matrix(rz, (5.0, 0.0, 0.0)), (1.0, 0.5), anchor=0)

        np.testing.assert_allclose(poly.vertices[0], [5.5, -1.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(poly.plane.normal, [0.0, 0.0, 1.0], atol=1e-12)

    def test_axes_are_basis_columns(self) -> None:
        """``x``, ``y``, ``z`` are the images of the local axes: +90° about Z."""
        m = MatrixTransform(x=[0, 1, 0, 0], y=[-1, 0, 0, 0], z=[0, 0, 1, 0])
        poly = build_polygon(m, (2.0, 1.0), anchor=0)

        np.testing.assert_allclose(poly.vertices[0], [1.0, -2.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(poly.vertices[1], [1.0, 2.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(poly.plane.normal, [0.0, 0.0, 1.0], atol=1e-12)

    def test_translation_from_fourth_components(self) -> None:
        m = MatrixTransform(x=[1, 0, 0, 4], y=[0, 1, 0, 5], z=[0, 0, 1, 6])
        np.testing.assert_array_equal(m.translation, [4.0, 5.0, 6.0])
        np.testing.assert_array_equal(m.as_array()[:, 3], [4.0, 5.0, 6.0])
        poly = build_polygon(m, (1.0, 1.0), anchor=0)
        np.testing.assert_allclose(poly.centroid, [4.0, 5.0, 6.0], atol=1e-12)

    def test_from_array_matches_fields(self) -> None:
        """A standard ``[M | t]`` array puts column j of ``M`` into axis j."""
        linear = euler_xyz_matrix(np.array([10.0, 20.0, 30.0])) @ np.diag([1.0, 2.0, 3.0])
        m = MatrixTransform.from_array(np.column_stack([linear, [7.0, 8.0, 9.0]]))

        np.testing.assert_allclose(m.x, np.append(linear[:, 0], 7.0))
        np.testing.assert_allclose(m.y, np.append(linear[:, 1], 8.0))
        np.testing.assert_allclose(m.z, np.append(linear[:, 2], 9.0))
        np.testing.assert_allclose(m.linear, linear)

    def test_anisotropy_measures_axis_lengths(self) -> None:
        """Scale comes from |x[:3]|, |y[:3]|, |z[:3]|, not from the rows."""
        # Rows all have length sqrt(2); columns have lengths 1, 1, 2.
        m = MatrixTransform(x=[1, 0, 0, 0], y=[0, 1, 0, 0], z=[1, 1, 1.4142135623730951, 0])
        np.testing.assert_allclose(recover_scale(m.linear), [1.0, 1.0, 2.0], atol=1e-12)
        _, _, flagged = resolve_transform(m, BuilderConfig())
        assert flagged

    def test_from_4x4(self) -> None:
        m = np.eye(4)
        m[:3, 3] = (1.0, 2.0, 3.0)
        t = MatrixTransform.from_array(m)
        np.testing.assert_array_equal(t.z, [0.0, 0.0, 1.0, 3.0])

    def test_projective_4x4_rejected(self) -> None:
        m = np.eye(4)
        m[3, 2] = 0.5
        with pytest.raises(PolygonBuildError):
            MatrixTransform.from_array(m)

    def test_bad_shape_rejected(self) -> None:
        with pytest.raises(PolygonBuildError):
            MatrixTransform.from_array(np.eye(3))

    def test_scale_recovery(self) -> None:
        r = euler_xyz_matrix(np.array([10.0, 20.0, 30.0]))
        linear = r @ np.diag([2.0, 3.0, 4.0])
        np.testing.assert_allclose(recover_scale(linear), [2.0, 3.0, 4.0], atol=1e-12)

    def test_uniform_scale_not_flagged(self) -> None:
        linear = 2.0 * euler_xyz_matrix(np.array([0.0, 45.0, 0.0]))
        _, _, flagged = resolve_transform(_matrix(linear), BuilderConfig())
        assert not flagged

    def test_is_anisotropic_tolerance(self) -> None:
        assert not is_anisotropic(np.array([1.0, 1.0005, 1.0]), 1e-3)
        assert is_anisotropic(np.array([1.0, 1.01, 1.0]), 1e-3)

    def test_nearest_rotation_is_orthonormal(self, rng: np.random.Generator) -> None:
        linear = euler_xyz_matrix(np.array([5.0, -40.0, 70.0])) + 0.05 * rng.normal(size=(3, 3))
        r = nearest_rotation(linear)
        np.testing.assert_allclose(r.T @ r, np.eye(3), atol=1e-12)

    def test_zero_column_rejected(self) -> None:
        with pytest.raises(PolygonBuildError):
            build_polygon(_matrix(np.diag([1.0, 0.0, 1.0])), (1.0, 1.0), anchor=0)

    def test_singular_matrix_rejected(self) -> None:
        """Unit columns, but two of them identical."""
        linear = [[1.0, 1.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 1.0]]
        with pytest.raises(PolygonBuildError):
            build_polygon(_matrix(linear), (1.0, 1.0), anchor=0)


# ===================================================================
# ANISOTROPY POLICY TESTS
# ===================================================================


class TestAnisotropyPolicy:
    """What happens to a matrix with unequal column lengths."""

    _STRETCH = np.diag([1.0, 2.0, 1.0])

    def test_average_policy(self, caplog: pytest.LogCaptureFixture) -> None:
        config = BuilderConfig(anisotropic_scale_policy="average")
        with caplog.at_level(logging.WARNING):
            poly = build_polygon(_matrix(self._STRETCH), (1.0, 1.0), anchor=3, config=config)

        assert "Bad scale" in caplog.text
        # mean scale 4/3, rotation identity
        np.testing.assert_allclose(poly.vertices[2], [4.0 / 3.0, 4.0 / 3.0, 0.0], atol=1e-12)

    def test_reject_policy(self) -> None:
        config = BuilderConfig(anisotropic_scale_policy="reject")
        with pytest.raises(PolygonBuildError, match="Bad scale"):
            build_polygon(_matrix(self._STRETCH), (1.0, 1.0), anchor=0, config=config)

    def test_keep_policy(self) -> None:
        config = BuilderConfig(anisotropic_scale_policy="keep")
        poly = build_polygon(_matrix(self._STRETCH), (1.0, 1.0), anchor=0, config=config)
        np.testing.assert_allclose(poly.vertices[2], [1.0, 2.0, 0.0], atol=1e-12)
        assert abs(poly.area - 8.0) < 1e-12

    def test_flagged_in_summary(self) -> None:
        records = [
            (_identity(), (1.0, 1.0), 0),
            (_matrix(self._STRETCH), (1.0, 1.0), 1),
        ]
        summary = build_polygons(records, BuilderConfig())
        assert len(summary.polygons) == 2
        assert summary.flagged == [1]
        assert summary.skipped == {}


# ===================================================================
# DEGENERATE INPUT TESTS
# ===================================================================


class TestDegenerateInput:
    """Extents and batches with failing records."""

    @pytest.mark.parametrize("extent", [(0.0, 1.0), (1.0, 0.0), (1e-9, 1.0), (float("nan"), 1.0)])
    def test_degenerate_extent(self, extent: tuple[float, float]) -> None:
        with pytest.raises(PolygonBuildError):
            build_polygon(_identity(), extent, anchor=0)

    def test_wrong_extent_length(self) -> None:
        with pytest.raises(PolygonBuildError):
            build_polygon(_identity(), (1.0,), anchor=0)

    def test_tiny_scale_collapses_area(self) -> None:
        with pytest.raises(PolygonBuildError):
            build_polygon(_identity(scale=1e-8), (1.0, 1.0), anchor=0)

    def test_batch_skips_failures(self, caplog: pytest.LogCaptureFixture) -> None:
        records = [
            (_identity(), (1.0, 1.0), 0),
            (_identity(), (0.0, 1.0), 1),
            (_identity(scale=0.0), (1.0, 1.0), 2),
            (_identity(position=(0.0, 0.0, 1.0)), (1.0, 1.0), 3),
        ]
        with caplog.at_level(logging.WARNING):
            summary = build_polygons(records)

        assert [p.anchor for p in summary.polygons] == [0, 3]
        assert set(summary.skipped) == {1, 2}
        assert "Skipping plane [1]" in caplog.text

    def test_error_is_value_error(self) -> None:
        assert issubclass(PolygonBuildError, ValueError)
