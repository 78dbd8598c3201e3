import re
from collections import OrderedDict

from errors import InvalidGeometry
from geometries import GeometryType, point
from wkt_parser import (
    LATITUDE_LONGITUDE_RE, check_geometry_type, normalize_wkt, parse_wkt
)


WKT_LITERAL = 'http://www.opengis.net/ont/geosparql#wktLiteral'
KML_LITERAL = 'http://www.opengis.net/ont/geosparql#kmlLiteral'

# https://epsg.io/4326
DEFAULT_SRID = 4326

DEFAULT_INDEX_TABLES = {
    GeometryType.GEOMETRY: 'geometry_index',
    GeometryType.GEOGRAPHY: 'geography_index'
}


def index_tables(config):
    """Return index table names by GeometryType.

    :param obj config: Service config
    """
    return {
        GeometryType.GEOMETRY: config.get(
            'geometry_table', DEFAULT_INDEX_TABLES[GeometryType.GEOMETRY]
        ),
        GeometryType.GEOGRAPHY: config.get(
            'geography_table', DEFAULT_INDEX_TABLES[GeometryType.GEOGRAPHY]
        )
    }


def value_literal(value):
    """Return the raw literal of a value object or of a plain value."""
    if isinstance(value, dict) and '@value' in value:
        value = value['@value']
    if value is None:
        return ''
    return value if isinstance(value, str) else str(value)


class AbstractDataType():
    """Base class of the geometric data types of values

    A data type validates and normalizes the literal of a value and converts
    it into a geometry for the geometry or geography index.
    """

    name = None
    label = None
    geometry_type = None

    def is_valid(self, value):
        """Return whether the value can be indexed.

        :param str|dict value: Literal or value object with '@value'
        """
        try:
            self.geometry_from_value(value)
        except InvalidGeometry:
            return False
        return True

    def normalize(self, value):
        """Return the literal as stored in the value table."""
        raise NotImplementedError

    def geometry_from_value(self, value):
        """Convert a value into a Geometry.

        :param str|dict value: Literal or value object with '@value'
        """
        raise NotImplementedError

    def json_ld(self, value):
        raise NotImplementedError


class GeometryDataType(AbstractDataType):
    """Any WKT on a flat plane"""

    name = 'geometry:geometry'
    label = 'Geometry'
    geometry_type = GeometryType.GEOMETRY

    def normalize(self, value):
        return normalize_wkt(value_literal(value).strip())

    def geometry_from_value(self, value):
        literal = value_literal(value)
        if not literal.strip():
            raise InvalidGeometry("Empty %s" % self.label.lower(), literal)
        geometry = parse_wkt(literal)
        return check_geometry_type(geometry, self.geometry_type, literal)

    def json_ld(self, value):
        """Return JSON-LD as a WKT literal with its SRID apart.

        GeoJSON is not used: it is not compliant with JSON-LD.
        """
        geometry = self.geometry_from_value(value)
        result = OrderedDict()
        result['@value'] = geometry.to_wkt()
        result['@type'] = WKT_LITERAL
        if geometry.srid:
            result['srid'] = geometry.srid
        return result


class GeographyDataType(GeometryDataType):
    """WKT on the earth surface, without multi geometries"""

    name = 'geometry:geography'
    label = 'Geography'
    geometry_type = GeometryType.GEOGRAPHY


class GeometryCoordinatesDataType(GeometryDataType):
    """Coordinates 'x,y' on a flat plane"""

    name = 'geometry:coordinates'
    label = 'Geometric coordinates'

    regex = re.compile(
        r'^\s*(?P<x>[+-]?(?:[0-9]+(?:[.][0-9]*)?|[.][0-9]+))'
        r'\s*,\s*(?P<y>[+-]?(?:[0-9]+(?:[.][0-9]*)?|[.][0-9]+))\s*$'
    )

    def normalize(self, value):
        match = self.regex.match(value_literal(value))
        if match is None:
            raise InvalidGeometry("Invalid %s" % self.label.lower(), value)
        return "%s,%s" % (match.group('x'), match.group('y'))

    def point(self, match):
        return point(match.group('x'), match.group('y'))

    def geometry_from_value(self, value):
        literal = value_literal(value)
        match = self.regex.match(literal)
        if match is not None:
            return self.point(match)
        # stored as wkt by old versions
        return super().geometry_from_value(literal)

    def json_ld(self, value):
        return OrderedDict([
            ('@value', value_literal(value)),
            ('@type', KML_LITERAL)
        ])


class GeometryPositionDataType(GeometryCoordinatesDataType):
    """Integer position 'x,y' from the top left corner of an image

    The y axis goes down, so the indexed point is 'POINT (x -y)'.
    """

    name = 'geometry:position'
    label = 'Geometric position'

    regex = re.compile(r'^\s*(?P<x>\d+)\s*,\s*(?P<y>\d+)\s*$')

    def point(self, match):
        return point(match.group('x'), -int(match.group('y')))

    def json_ld(self, value):
        match = self.regex.match(value_literal(value))
        if match is None:
            raise InvalidGeometry("Invalid %s" % self.label.lower(), value)
        return {
            '@value': {
                'x': int(match.group('x')),
                'y': int(match.group('y'))
            }
        }


class GeographyCoordinatesDataType(GeometryCoordinatesDataType):
    """Coordinates 'latitude,longitude', indexed as 'POINT (longitude latitude)'"""

    name = 'geography:coordinates'
    label = 'Geographic coordinates'
    geometry_type = GeometryType.GEOGRAPHY

    regex = LATITUDE_LONGITUDE_RE

    def normalize(self, value):
        match = self.regex.match(value_literal(value))
        if match is None:
            raise InvalidGeometry("Invalid %s" % self.label.lower(), value)
        # remove the leading +
        return "%s,%s" % (
            match.group('latitude').lstrip('+'),
            match.group('longitude').lstrip('+')
        )

    def point(self, match):
        return point(match.group('longitude'), match.group('latitude'))


DATA_TYPES = OrderedDict(
    (data_type.name, data_type) for data_type in [
        GeographyDataType(),
        GeometryDataType(),
        GeographyCoordinatesDataType(),
        GeometryCoordinatesDataType(),
        GeometryPositionDataType()
    ]
)

# data types stored as WKT literals
WKT_DATA_TYPES = ['geometry:geometry', 'geometry:geography']


def get_data_type(name):
    """Return the geometric data type with name, or None."""
    return DATA_TYPES.get(name)


def data_type_names(geometry_type=None):
    """Return names of the geometric data types, optionally for one mode."""
    return [
        name for name, data_type in DATA_TYPES.items()
        if geometry_type is None or data_type.geometry_type == geometry_type
    ]
