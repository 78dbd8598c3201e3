from geometry_query_builder_base import (
    GeometryQueryBuilderBase, box_polygon_wkt, point_wkt, radius_in_metres
)


class GeometryQueryBuilderPostgres(GeometryQueryBuilderBase):
    """PostgreSQL/PostGIS-specific implementation of GeometryQueryBuilder"""

    def escape_table_name(self, table):
        """Escape table name for PostgreSQL"""
        return '"%s"' % table

    def compile_around(self, query, around, srid, column):
        """Generate SQL predicate using PostGIS ST_DistanceSphere"""
        point_sql = self.geom_from_text_sql(
            query, point_wkt(around['longitude'], around['latitude']), srid
        )
        return "ST_DistanceSphere(%s, %s) <= %s" % (
            point_sql, column,
            query.create_named_parameter(radius_in_metres(around))
        )

    def compile_box(self, query, box, srid, column):
        """Generate SQL predicate using PostGIS ST_Contains"""
        return "ST_Contains(%s, %s) = true" % (
            self.geom_from_text_sql(query, box_polygon_wkt(box), srid), column
        )
