import re

from shapely import wkt
from shapely.errors import ShapelyError

from errors import InvalidGeometry
from geometries import Geometry, GeometryType, point


SRID_RE = re.compile(r'^\s*SRID\s*=\s*(\d+)\s*;\s*(.*)$', re.IGNORECASE | re.DOTALL)

# "latitude,longitude" as entered by end users
LATITUDE_LONGITUDE_RE = re.compile(
    r'^\s*(?P<latitude>[+-]?(?:[1-8]?\d(?:\.\d+)?|90(?:\.0+)?))'
    r'\s*,\s*'
    r'(?P<longitude>[+-]?(?:180(?:\.0+)?|(?:1[0-7]\d|[1-9]?\d)(?:\.\d+)?))\s*$'
)


def split_srid(value):
    """Split an optional 'SRID=<n>;' prefix from a WKT string.

    Return (srid, wkt), with srid None if there is no prefix.

    :param str value: WKT string, optionally prefixed
    """
    match = SRID_RE.match(value)
    if match:
        return int(match.group(1)), match.group(2).strip()
    return None, value.strip()


def parse_wkt(value):
    """Parse a WKT string, optionally prefixed with 'SRID=<n>;'.

    :param str value: WKT string
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidGeometry("Empty geometry", value)

    srid, text = split_srid(value)
    try:
        shape = wkt.loads(text)
    except (ShapelyError, ValueError) as e:
        raise InvalidGeometry("Invalid WKT: %s" % e, value)
    return Geometry(shape, srid, value)


def normalize_wkt(value):
    """Return the canonical stored form of a WKT string.

    Uppercase, a single space between the geometry type and its coordinates,
    between numbers and after commas, e.g. 'SRID=4326;POINT (2.29 48.85)'.

    :param str value: WKT string
    """
    return parse_wkt(value).to_ewkt()


def parse_coordinates(value):
    """Convert geographic coordinates into a point Geometry.

    WKT uses 'POINT (x y)', so the point is 'POINT (longitude latitude)'.

    :param str|dict value: 'latitude,longitude' or
                           {'latitude': ..., 'longitude': ...}
    """
    if isinstance(value, dict):
        try:
            latitude = float(value['latitude'])
            longitude = float(value['longitude'])
        except (KeyError, OverflowError, TypeError, ValueError):
            raise InvalidGeometry("Invalid coordinates", value)
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise InvalidGeometry("Coordinates out of range", value)
        return point(longitude, latitude)

    match = LATITUDE_LONGITUDE_RE.match(value) if isinstance(value, str) else None
    if match is None:
        raise InvalidGeometry("Invalid coordinates", value)
    return point(match.group('longitude'), match.group('latitude'))


def check_geometry_type(geometry, geometry_type, value=None):
    """Raise InvalidGeometry if a geometry cannot be indexed in a mode.

    Geographies cannot be multi geometries.

    :param Geometry geometry: Parsed geometry
    :param GeometryType geometry_type: Geometry or geography
    :param obj value: Input value for error details
    """
    if geometry_type == GeometryType.GEOGRAPHY and geometry.is_multi():
        raise InvalidGeometry(
            "Unsupported geography type '%s'" % geometry.TYPE, value
        )
    return geometry


def parse_geometry(value, geometry_type=GeometryType.GEOMETRY):
    """Convert a value into a Geometry.

    Accept a Geometry (returned as is), a WKT string optionally prefixed
    with 'SRID=<n>;', a 'latitude,longitude' string or a dict with latitude
    and longitude.

    :param str|dict|Geometry value: Value to parse
    :param GeometryType geometry_type: Geometry or geography
    """
    if isinstance(value, Geometry):
        geometry = value
    elif isinstance(value, dict):
        geometry = parse_coordinates(value)
    elif isinstance(value, str) and LATITUDE_LONGITUDE_RE.match(value):
        geometry = parse_coordinates(value)
    else:
        geometry = parse_wkt(value)
    return check_geometry_type(geometry, geometry_type, value)
