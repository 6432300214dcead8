import io
import math

import pytest
import trimesh

from core.exceptions import InvalidDimensionError, UnsupportedShapeKindError
from domain.models import ShapeDescriptor, ShapeKind
from services import mesh_builder

ALL_SHAPES = [
    ShapeDescriptor(kind=ShapeKind.CUBE, dimensions={"width": 50, "height": 50, "depth": 50}),
    ShapeDescriptor(kind=ShapeKind.CYLINDER, dimensions={"radius": 25, "height": 50}),
    ShapeDescriptor(kind=ShapeKind.SPHERE, dimensions={"radius": 25}),
    ShapeDescriptor(kind=ShapeKind.CONE, dimensions={"radius": 25, "height": 50}),
    ShapeDescriptor(kind=ShapeKind.TORUS, dimensions={"radius": 30, "width": 10}),
]


def _load(text: str) -> trimesh.Trimesh:
    return trimesh.load_mesh(io.BytesIO(text.encode()), file_type="stl")


# --- Tessellation counts ---


@pytest.mark.parametrize(
    "kind, expected",
    [
        (ShapeKind.CUBE, 12),
        (ShapeKind.CYLINDER, 96),  # 24 * 2 side + 24 top + 24 bottom
        (ShapeKind.SPHERE, 352),  # 16 * (2 polar fans + 10 bands * 2)
        (ShapeKind.CONE, 48),  # 24 side + 24 base
        (ShapeKind.TORUS, 768),  # 16 * 24 * 2
    ],
)
def test_triangle_counts(kind, expected):
    mesh = mesh_builder.tessellate(ShapeDescriptor(kind=kind))
    assert mesh.triangle_count == expected


@pytest.mark.parametrize("shape", ALL_SHAPES, ids=lambda s: s.kind.value)
def test_stl_text_reparses_to_same_triangle_count(shape):
    text = mesh_builder.build(shape)

    lines = text.strip().splitlines()
    assert lines[0] == "solid model"
    assert lines[-1] == "endsolid model"
    assert text.count("facet normal") == text.count("endfacet")
    assert text.count("outer loop") == text.count("endloop")

    reparsed = mesh_builder.parse_stl(text)
    assert reparsed.triangle_count == mesh_builder.tessellate(shape).triangle_count


@pytest.mark.parametrize("shape", ALL_SHAPES, ids=lambda s: s.kind.value)
def test_meshes_are_closed_and_outward(shape):
    """
    Every primitive must load as a watertight, consistently wound solid
    with positive volume (i.e. the triangles face outwards).
    """
    mesh = _load(mesh_builder.build(shape))

    assert mesh.is_watertight
    assert mesh.is_winding_consistent
    assert mesh.volume > 0
    assert mesh.volume / 1000 == pytest.approx(mesh_builder.volume_cm3(shape), rel=0.1)


@pytest.mark.parametrize("shape", ALL_SHAPES, ids=lambda s: s.kind.value)
def test_normals_are_unit_length_and_agree_with_winding(shape):
    for facet in mesh_builder.tessellate(shape).facets:
        nx, ny, nz = facet.normal
        assert math.sqrt(nx * nx + ny * ny + nz * nz) == pytest.approx(1.0)

        a, b, c = facet.vertices
        e1 = [b[i] - a[i] for i in range(3)]
        e2 = [c[i] - a[i] for i in range(3)]
        cross = (
            e1[1] * e2[2] - e1[2] * e2[1],
            e1[2] * e2[0] - e1[0] * e2[2],
            e1[0] * e2[1] - e1[1] * e2[0],
        )
        assert cross[0] * nx + cross[1] * ny + cross[2] * nz > 0


def test_cube_is_centered_with_full_extents():
    shape = ShapeDescriptor(kind=ShapeKind.CUBE, dimensions={"width": 40, "height": 30, "depth": 20})
    mesh = _load(mesh_builder.build(shape))

    assert mesh.extents.tolist() == pytest.approx([40, 30, 20])
    assert mesh.bounds[0].tolist() == pytest.approx([-20, -15, -10])

    normals = {facet.normal for facet in mesh_builder.tessellate(shape).facets}
    assert normals == {(1, 0, 0), (-1, 0, 0), (0, 1, 0), (0, -1, 0), (0, 0, 1), (0, 0, -1)}


def test_cone_apex_sits_at_height_above_base():
    shape = ShapeDescriptor(kind=ShapeKind.CONE, dimensions={"radius": 10, "height": 40})
    mesh = _load(mesh_builder.build(shape))

    assert mesh.bounds[0][1] == pytest.approx(0)
    assert mesh.bounds[1][1] == pytest.approx(40)


def test_sphere_normals_point_from_center():
    mesh = mesh_builder.tessellate(ShapeDescriptor(kind=ShapeKind.SPHERE, dimensions={"radius": 10}))
    for facet in mesh.facets:
        # First vertex of each band is on the sphere, the normal is its direction
        assert any(
            all(v[i] / 10 == pytest.approx(facet.normal[i], abs=1e-9) for i in range(3)) for v in facet.vertices
        )


def test_build_is_deterministic():
    shape = ShapeDescriptor(kind=ShapeKind.TORUS, dimensions={"radius": 20, "width": 6})
    assert mesh_builder.build(shape) == mesh_builder.build(shape)


# --- Dimensions ---


def test_missing_dimensions_use_defaults():
    assert mesh_builder.resolve_dimensions(ShapeDescriptor(kind=ShapeKind.CUBE)) == {
        "width": 50.0,
        "height": 50.0,
        "depth": 50.0,
    }
    assert mesh_builder.resolve_dimensions(ShapeDescriptor(kind=ShapeKind.CYLINDER, dimensions={"height": 10})) == {
        "radius": 25.0,
        "height": 10.0,
    }


def test_negative_radius_is_rejected():
    shape = ShapeDescriptor(kind=ShapeKind.CYLINDER, dimensions={"radius": -5})

    with pytest.raises(InvalidDimensionError) as exc_info:
        mesh_builder.build(shape)

    assert exc_info.value.dimension == "radius"
    assert exc_info.value.code == "invalid_dimension"


@pytest.mark.parametrize("bad", [0, -1.5, float("nan"), float("inf")])
def test_non_positive_or_non_finite_dimensions_are_rejected(bad):
    shape = ShapeDescriptor(kind=ShapeKind.CUBE, dimensions={"width": bad})

    with pytest.raises(InvalidDimensionError):
        mesh_builder.build(shape)
    with pytest.raises(InvalidDimensionError):
        mesh_builder.volume_cm3(shape)


def test_unused_dimensions_are_ignored():
    shape = ShapeDescriptor(kind=ShapeKind.SPHERE, dimensions={"radius": 5, "width": -1})
    assert mesh_builder.tessellate(shape).triangle_count == 352


# --- Shape kinds ---


def test_coerce_kind_accepts_any_case():
    assert mesh_builder.coerce_kind(" Sphere ") == ShapeKind.SPHERE


@pytest.mark.parametrize("kind", ["text", "custom", "ai", "dodecahedron"])
def test_coerce_kind_rejects_unsupported(kind):
    with pytest.raises(UnsupportedShapeKindError):
        mesh_builder.coerce_kind(kind)


def test_unsupported_kind_falls_back_to_default_cube():
    shape = mesh_builder.coerce_shape("text", {"width": 10})

    assert shape == mesh_builder.FALLBACK_SHAPE
    assert mesh_builder.tessellate(shape).triangle_count == 12


def test_supported_kind_keeps_dimensions():
    shape = mesh_builder.coerce_shape("cone", {"radius": 5, "height": 9})
    assert shape == ShapeDescriptor(kind=ShapeKind.CONE, dimensions={"radius": 5, "height": 9})


# --- Parsing ---


def test_parse_stl_rejects_mismatched_framing():
    with pytest.raises(ValueError):
        mesh_builder.parse_stl("solid a\nendsolid b\n")


def test_parse_stl_rejects_incomplete_facet():
    text = "\n".join(
        [
            "solid model",
            "facet normal 0 0 1",
            "outer loop",
            "vertex 0 0 0",
            "vertex 1 0 0",
            "endloop",
            "endfacet",
            "endsolid model",
        ]
    )
    with pytest.raises(ValueError):
        mesh_builder.parse_stl(text)


# --- Estimation ---


def test_cube_volume():
    shape = ShapeDescriptor(kind=ShapeKind.CUBE, dimensions={"width": 50, "height": 50, "depth": 50})
    assert mesh_builder.volume_cm3(shape) == pytest.approx(125.0)


def test_sphere_volume():
    shape = ShapeDescriptor(kind=ShapeKind.SPHERE, dimensions={"radius": 25})
    assert mesh_builder.volume_cm3(shape) == pytest.approx(65.45, abs=0.01)


@pytest.mark.parametrize(
    "shape, expected",
    [
        (ShapeDescriptor(kind=ShapeKind.CYLINDER, dimensions={"radius": 10, "height": 10}), math.pi),
        (ShapeDescriptor(kind=ShapeKind.CONE, dimensions={"radius": 10, "height": 30}), math.pi),
        (ShapeDescriptor(kind=ShapeKind.TORUS, dimensions={"radius": 30, "width": 10}), 2 * math.pi**2 * 30 * 25 / 1000),
    ],
)
def test_closed_form_volumes(shape, expected):
    assert mesh_builder.volume_cm3(shape) == pytest.approx(expected)


def test_estimated_minutes_floor_and_rounding():
    assert mesh_builder.estimated_minutes(0.0) == 5
    assert mesh_builder.estimated_minutes(3.0) == 5
    assert mesh_builder.estimated_minutes(125.0) == 188  # 187.5 rounds up
    assert mesh_builder.estimated_minutes(100.0) == 150


def test_estimated_minutes_is_monotonic():
    volumes = [v / 4 for v in range(0, 2000)]
    minutes = [mesh_builder.estimated_minutes(v) for v in volumes]

    assert min(minutes) >= 5
    assert all(a <= b for a, b in zip(minutes, minutes[1:]))
