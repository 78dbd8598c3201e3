import math
from enum import Enum

from shapely.geometry import Point as ShapelyPoint

from errors import InvalidGeometry


class GeometryType(Enum):
    """Index mode of a geometric value"""
    # flat plane, e.g. pixel positions on an image
    GEOMETRY = 'geometry'
    # earth surface, longitude and latitude
    GEOGRAPHY = 'geography'


# shapely geometry types that can be indexed
SUPPORTED_TYPES = [
    'Point', 'LineString', 'Polygon',
    'MultiPoint', 'MultiLineString', 'MultiPolygon'
]


def format_number(value):
    """Format a coordinate for WKT output.

    Integral values are written without decimals, e.g. 2.0 -> '2'.

    :param float value: Number
    """
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def coords_text(coords):
    return "(%s)" % ", ".join(
        "%s %s" % (format_number(x), format_number(y)) for x, y in coords
    )


def wkt_body(shape):
    """Return WKT text of a shapely geometry after its type, e.g. '(1 2)'.

    :param BaseGeometry shape: Shapely geometry
    """
    if shape.geom_type == 'Polygon':
        rings = [shape.exterior] + list(shape.interiors)
        return "(%s)" % ", ".join(coords_text(ring.coords) for ring in rings)
    elif shape.geom_type.startswith('Multi'):
        return "(%s)" % ", ".join(wkt_body(part) for part in shape.geoms)
    else:
        return coords_text(shape.coords)


def check_shape(shape, value=None):
    """Raise InvalidGeometry if a shapely geometry cannot be indexed.

    Only non-empty 2D points, line strings, polygons and their multi
    variants with finite coordinates are supported.

    :param BaseGeometry shape: Shapely geometry
    :param obj value: Input value for error details
    """
    if shape.geom_type not in SUPPORTED_TYPES:
        raise InvalidGeometry(
            "Unsupported geometry type '%s'" % shape.geom_type.upper(), value
        )
    if shape.is_empty:
        raise InvalidGeometry("Empty geometries are not supported", value)
    if shape.has_z:
        raise InvalidGeometry("Only 2D coordinates are supported", value)

    parts = shape.geoms if shape.geom_type.startswith('Multi') else [shape]
    sequences = []
    for part in parts:
        if part.is_empty:
            raise InvalidGeometry("Empty geometries are not supported", value)
        if part.geom_type == 'Polygon':
            for ring in [part.exterior] + list(part.interiors):
                coords = list(ring.coords)
                if len(coords) < 4:
                    raise InvalidGeometry(
                        "A polygon ring requires at least 4 points, got %d"
                        % len(coords), value
                    )
                if coords[0] != coords[-1]:
                    raise InvalidGeometry(
                        "A polygon ring must be closed", value
                    )
                sequences.append(coords)
        else:
            coords = list(part.coords)
            if part.geom_type == 'LineString' and len(coords) < 2:
                raise InvalidGeometry(
                    "A line string requires at least 2 points, got %d"
                    % len(coords), value
                )
            sequences.append(coords)

    for coords in sequences:
        for x, y in coords:
            if not (math.isfinite(x) and math.isfinite(y)):
                raise InvalidGeometry(
                    "Coordinates must be finite numbers", value
                )


class Geometry():
    """Geometry class

    Shapely geometry with an optional SRID (0 or None means a flat plane
    without reference system), written as canonical uppercase WKT.
    """

    def __init__(self, shape, srid=None, value=None):
        """Constructor

        :param BaseGeometry shape: Shapely geometry
        :param int srid: Spatial reference identifier
        :param obj value: Input value for error details
        """
        check_shape(shape, value)
        self.shape = shape
        self.srid = srid

    @property
    def TYPE(self):
        """WKT geometry type, e.g. 'MULTIPOLYGON'."""
        return self.shape.geom_type.upper()

    def to_wkt(self):
        """Return canonical uppercase WKT without SRID."""
        return "%s %s" % (self.TYPE, wkt_body(self.shape))

    def to_ewkt(self):
        """Return WKT prefixed with 'SRID=<srid>;' if a SRID is set."""
        if self.srid:
            return "SRID=%d;%s" % (self.srid, self.to_wkt())
        return self.to_wkt()

    def is_multi(self):
        return self.TYPE.startswith('MULTI')

    def __eq__(self, other):
        return (
            isinstance(other, Geometry)
            and (self.srid or 0) == (other.srid or 0)
            and self.to_wkt() == other.to_wkt()
        )

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.to_ewkt())

    def __repr__(self):
        return "<Geometry %s>" % self.to_ewkt()

    def __str__(self):
        return self.to_ewkt()


def point(x, y, srid=None):
    """Return a point Geometry.

    :param float|str x: X or longitude
    :param float|str y: Y or latitude
    :param int srid: Spatial reference identifier
    """
    try:
        x = float(x)
        y = float(y)
    except (OverflowError, TypeError, ValueError):
        raise InvalidGeometry("Invalid coordinates", (x, y))
    return Geometry(ShapelyPoint(x, y), srid, (x, y))
