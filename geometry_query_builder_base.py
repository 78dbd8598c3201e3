from abc import ABC, abstractmethod

from data_types import DEFAULT_SRID, index_tables
from errors import UnsupportedPredicate
from geometries import GeometryType, format_number
from geometry_query_normalizer import PREDICATE_KEYS, geo_filters


def point_wkt(x, y):
    return "POINT(%s %s)" % (format_number(x), format_number(y))


def box_polygon_wkt(box):
    """Return the closed polygon of a box [left, top, right, bottom]."""
    x1, y1, x2, y2 = [format_number(coord) for coord in box]
    return "POLYGON((%s %s, %s %s, %s %s, %s %s, %s %s))" % (
        x1, y1, x2, y1, x2, y2, x1, y2, x1, y1
    )


def map_box_to_box(mapbox):
    """Convert [top lat, left long, bottom lat, right long] into
    [left x, top y, right x, bottom y].
    """
    return [mapbox[1], mapbox[0], mapbox[3], mapbox[2]]


def radius_in_metres(around):
    if around.get('unit', 'km') == 'km':
        return around['radius'] * 1000
    return around['radius']


class GeometryQueryBuilderBase(ABC):
    """Base class for GeometryQueryBuilder implementations

    Add joins on the geometry or geography index table and spatial
    predicates to a resource query, for a database dialect.

    Differences between MySQL and PostgreSQL:
    - ST_Distance_Sphere = ST_DistanceSphere
    - MBRContains = ST_Contains, MBR is used only with a box
    - old MySQL versions have no spherical distance
    """

    def __init__(self, normalizer, config, logger):
        """Constructor

        :param GeometryQueryNormalizer normalizer: Geo query normalizer
        :param obj config: Service config
        :param Logger logger: Application logger
        """
        self.normalizer = normalizer
        self.logger = logger
        self.default_srid = int(config.get('locate_srid', DEFAULT_SRID))
        self.tables = index_tables(config)

    @abstractmethod
    def escape_table_name(self, table):
        """Escape table name according to database dialect"""
        pass

    @abstractmethod
    def compile_around(self, query, around, srid, column):
        """Generate SQL predicate for a geographic radius search"""
        pass

    @abstractmethod
    def compile_box(self, query, box, srid, column):
        """Generate SQL predicate for a box search"""
        pass

    def build_query(self, query, raw_query):
        """Add spatial joins and predicates for the geo filters of a query.

        All filters are ANDed and share the SRID, the index table and the
        property of the first filter. The query is not modified when there
        is no valid geo filter.

        NOTE: a join without property returns a row for each geometric value
        of a resource

        :param ResourceQuery query: Resource query to extend
        :param dict raw_query: Search query with key 'geo'
        """
        normalized = self.normalizer.normalize(raw_query)
        if not normalized.get('geo'):
            return

        geos = geo_filters(normalized['geo'])
        first = geos[0]
        geometry_type = self.geometry_type(first)
        srid = self.resolve_srid(first, geometry_type)
        column = self.join_index(query, geometry_type, first.get('property'))

        for geo in geos:
            query.and_where(self.compile_predicate(query, geo, srid, column))

        self.logger.debug(
            "geo query on %s: %s" % (geometry_type.value, query.where_clauses)
        )

    def geometry_type(self, geo):
        """Return whether the filters search the geometry or geography index.

        :param dict geo: First normalized filter
        """
        if geo.get('mode'):
            return GeometryType(geo['mode'])
        if (
            geo.get('srid')
            or 'latitude' in geo.get('around', {})
            or 'mapbox' in geo
            or 'area' in geo
        ):
            return GeometryType.GEOGRAPHY
        return GeometryType.GEOMETRY

    def resolve_srid(self, geo, geometry_type):
        if geo.get('srid'):
            return int(geo['srid'])
        if geometry_type == GeometryType.GEOGRAPHY:
            return self.default_srid
        return 0

    def join_index(self, query, geometry_type, property_id=None):
        """Join the index table and return the indexed value column.

        :param ResourceQuery query: Resource query
        :param GeometryType geometry_type: Index to join
        :param int property_id: Optional property to restrict the join to
        """
        alias = query.create_alias('geo')
        on_clauses = ["%s.resource_id = %s.id" % (alias, query.alias)]
        if property_id:
            on_clauses.append("%s.property_id = %s" % (
                alias, query.create_named_parameter(int(property_id))
            ))
        query.join(
            self.escape_table_name(self.tables[geometry_type]), alias,
            on_clauses
        )
        return "%s.value" % alias

    def compile_predicate(self, query, geo, srid, column):
        """Return the SQL predicate of a normalized filter.

        :param ResourceQuery query: Resource query, for bound parameters
        :param dict geo: Normalized filter
        :param int srid: SRID of the query geometries
        :param str column: Indexed value column
        """
        keys = [key for key in PREDICATE_KEYS if geo.get(key)]
        if len(keys) != 1:
            raise UnsupportedPredicate(
                "A geo filter requires exactly one predicate, got %s" % keys
            )

        key = keys[0]
        if key == 'around':
            around = geo['around']
            if 'latitude' in around and 'longitude' in around:
                return self.compile_around(query, around, srid, column)
            if 'x' in around and 'y' in around:
                return self.compile_xy(query, around, srid, column)
            raise UnsupportedPredicate("Invalid around predicate %s" % around)
        elif key == 'box':
            return self.compile_box(query, geo['box'], srid, column)
        elif key == 'mapbox':
            return self.compile_box(
                query, map_box_to_box(geo['mapbox']), srid, column
            )
        else:
            # zone and area
            return self.compile_zone(query, geo[key], srid, column)

    def geom_from_text_sql(self, query, wkt, srid):
        """Generate SQL fragment for a geometry from bound WKT and SRID"""
        return "ST_GeomFromText(%s, %s)" % (
            query.create_named_parameter(wkt),
            query.create_named_parameter(int(srid))
        )

    def compile_xy(self, query, around, srid, column):
        """Generate SQL predicate for a flat radius search"""
        point_sql = self.geom_from_text_sql(
            query, point_wkt(around['x'], around['y']), srid
        )
        return "ST_Distance(%s, %s) <= %s" % (
            point_sql, column,
            query.create_named_parameter(around['radius'])
        )

    def compile_zone(self, query, wkt, srid, column):
        """Generate SQL predicate for a polygon containment search"""
        # "= true" avoids misinterpretation of the function result on MySQL
        return "ST_Contains(%s, %s) = true" % (
            self.geom_from_text_sql(query, wkt, srid), column
        )
