from geometry_query_builder_base import (
    GeometryQueryBuilderBase, box_polygon_wkt, point_wkt, radius_in_metres
)


# approximate length of a degree at the equator
METRES_PER_DEGREE = 111133


class GeometryQueryBuilderMysql(GeometryQueryBuilderBase):
    """MySQL-specific implementation of GeometryQueryBuilder

    For MySQL >= 5.7.6 and MariaDB >= 10.2.2.
    """

    def escape_table_name(self, table):
        """Escape table name for MySQL"""
        return '`%s`' % table

    def compile_around(self, query, around, srid, column):
        """Generate SQL predicate using MySQL ST_Distance_Sphere"""
        point_sql = self.geom_from_text_sql(
            query, point_wkt(around['longitude'], around['latitude']), srid
        )
        return "ST_Distance_Sphere(%s, %s) <= %s" % (
            point_sql, column,
            query.create_named_parameter(radius_in_metres(around))
        )

    def compile_box(self, query, box, srid, column):
        """Generate SQL predicate using the minimum bounding rectangle"""
        return "MBRContains(%s, %s) = true" % (
            self.geom_from_text_sql(query, box_polygon_wkt(box), srid), column
        )


class GeometryQueryBuilderMysqlLegacy(GeometryQueryBuilderMysql):
    """GeometryQueryBuilder for old MySQL and MariaDB without spherical distance"""

    def compile_around(self, query, around, srid, column):
        """Generate SQL predicate with a buffer in degrees around the point

        The radius is converted with the length of a degree at the equator,
        so the circle is approximate away from it.
        """
        radius_degrees = radius_in_metres(around) / METRES_PER_DEGREE
        return "ST_Contains(ST_Buffer(Point(%s, %s), %s), %s) = true" % (
            query.create_named_parameter(around['longitude']),
            query.create_named_parameter(around['latitude']),
            query.create_named_parameter(radius_degrees),
            column
        )
