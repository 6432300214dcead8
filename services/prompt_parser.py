import re

import structlog

from domain.models import ShapeDescriptor, ShapeKind

logger = structlog.get_logger()

_UNIT = r"(?:mm|millimeters?)?"
_SEP = r"(?:\s*x\s*|\s*by\s*)"

# "40x30x20", "40mm by 30mm", "40 x 30" (depth defaults to width)
DIMENSIONS_PATTERN = re.compile(rf"(\d+(?:\.\d+)?)\s*{_UNIT}{_SEP}(\d+(?:\.\d+)?)(?:\s*{_UNIT}{_SEP}(\d+(?:\.\d+)?))?")
RADIUS_PATTERN = re.compile(rf"(\d+(?:\.\d+)?)\s*{_UNIT}\s*radius")
SIZE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(?:mm|millimeters?)")

KEYWORDS = [
    (ShapeKind.SPHERE, ("sphere", "ball", "orb")),
    (ShapeKind.CYLINDER, ("cylinder", "tube", "pipe", "rod")),
    (ShapeKind.CONE, ("cone", "pyramid")),
    (ShapeKind.TORUS, ("donut", "torus", "ring")),
    (ShapeKind.CUBE, ("cube", "box", "block", "square")),
]


def parse_prompt(prompt: str) -> ShapeDescriptor:
    """
    Turns free text into a shape. Never fails: text without a recognizable
    shape becomes a cube, text without numbers gets default sizes.
    """
    lower = prompt.lower()

    width = height = depth = 50.0
    radius = 25.0

    dims = DIMENSIONS_PATTERN.search(lower)
    radius_match = RADIUS_PATTERN.search(lower)
    size = SIZE_PATTERN.search(lower)

    if dims:
        width = float(dims.group(1))
        height = float(dims.group(2))
        depth = float(dims.group(3)) if dims.group(3) else width
    elif radius_match:
        radius = float(radius_match.group(1))
        width = height = depth = radius * 2
    elif size:
        width = height = depth = float(size.group(1))
        radius = width / 2

    kind = next((k for k, words in KEYWORDS if any(word in lower for word in words)), ShapeKind.CUBE)

    if kind == ShapeKind.SPHERE:
        dimensions = {"radius": radius}
    elif kind in (ShapeKind.CYLINDER, ShapeKind.CONE):
        dimensions = {"radius": radius or width / 2, "height": height}
    elif kind == ShapeKind.TORUS:
        dimensions = {"radius": radius or 30.0, "width": 10.0}
    else:
        dimensions = {"width": width, "height": height, "depth": depth}

    logger.debug("prompt_parsed", kind=kind.value, dimensions=dimensions)
    return ShapeDescriptor(kind=kind, dimensions=dimensions)
