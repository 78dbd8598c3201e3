import unittest

from flask.logging import logging
from sqlalchemy.sql import text as sql_text

from geometry_index import GeometryIndex
from index_geometries_job import (
    STATUS_ABORTED, STATUS_COMPLETED, STATUS_ERROR, STATUS_STOPPED,
    IndexGeometriesJob, check_literal, linestring_to_point
)
from property_resolver import PropertyResolver
from sqlite_spatial import add_resource, add_value, create_test_engine, index_rows


ITEM = 'Omeka\\Entity\\Item'
MEDIA = 'Omeka\\Entity\\Media'
ANNOTATION = 'Annotate\\Entity\\Annotation'
ANNOTATION_TARGET = 'Annotate\\Entity\\AnnotationTarget'

RDF_VALUE = 3
OA_HAS_SELECTOR = 4


class CheckLiteralTestCase(unittest.TestCase):
    """Test case for the detection of suspicious WKT literals"""

    def test_valid_literals(self):
        literals = [
            "POINT(1 2)",
            "SRID=4326;POINT (2.29 48.85)",
            "LINESTRING(0 0, 1 1)",
            "POLYGON((0 0, 1 0, 1 1, 0 0))",
            "MULTIPOINT((1 2),(3 4))",
            "MULTILINESTRING((1 2))",
            "48.85,2.29"
        ]
        for literal in literals:
            self.assertIsNone(check_literal(literal), literal)

    def test_suspicious_literals(self):
        self.assertEqual(
            "point with a comma", check_literal("POINT(1 2, 3 4)")
        )
        self.assertEqual(
            "line string with less than 2 coordinates",
            check_literal("SRID=4326;linestring(1 2)")
        )
        self.assertEqual(
            "polygon ring with less than 4 coordinates",
            check_literal("POLYGON((0 0, 1 0, 1 1, 0 0), (0 0, 1 1, 0 0))")
        )

    def test_linestring_to_point(self):
        self.assertEqual("POINT (1 2)", linestring_to_point("LINESTRING(1 2)"))
        self.assertEqual(
            "SRID=4326;POINT (1.5 -2)",
            linestring_to_point("SRID=4326; linestring ( 1.5  -2 )")
        )
        self.assertIsNone(linestring_to_point("LINESTRING(1 2, 3 4)"))
        self.assertIsNone(linestring_to_point("MULTILINESTRING((1 2))"))
        self.assertIsNone(linestring_to_point("POINT(1 2)"))


class IndexGeometriesJobTestCase(unittest.TestCase):
    """Test case for the bulk index jobs"""

    def setUp(self):
        self.db = create_test_engine()
        self.logger = logging.getLogger()
        with self.db.begin() as conn:
            add_resource(conn, 1, ITEM)
            add_resource(conn, 2, ITEM)
            add_resource(conn, 3, MEDIA)
            add_resource(conn, 4, ANNOTATION)
            add_value(conn, 1, 'geometry:geography', "SRID=4326;POINT(2.29 48.85)")
            add_value(conn, 1, 'geometry:geometry', "POLYGON((0 0, 10 0, 10 10, 0 0))", 2)
            add_value(conn, 1, 'literal', "Paris")
            add_value(conn, 2, 'geography:coordinates', "45.76,4.83")
            add_value(conn, 3, 'geometry:position', "10,20")
            add_value(conn, 4, 'geometry:geography', "POINT(1 2)")

    def tearDown(self):
        self.db.dispose()

    def job(self, config=None, should_stop=None):
        return IndexGeometriesJob(
            self.db, GeometryIndex(config or {}, self.logger),
            PropertyResolver(self.db, self.logger), self.logger, should_stop
        )

    def rows(self, table):
        with self.db.connect() as conn:
            return index_rows(conn, table)

    def values(self):
        with self.db.connect() as conn:
            return [tuple(row) for row in conn.execute(sql_text(
                "SELECT id, resource_id, type, value, lang FROM value ORDER BY id"
            ))]

    def test_unknown_mode(self):
        with self.assertLogs(level='INFO') as logs:
            self.assertEqual(STATUS_STOPPED, self.job().run('everything'))
        self.assertIn("no mode selected", logs.output[-1])
        self.assertEqual([], self.rows('geometry_index'))

    def test_reindex_resources(self):
        self.assertEqual(STATUS_COMPLETED, self.job().run('resources reindex'))
        self.assertEqual([
            (1, 1, 2, "POLYGON ((0 0, 10 0, 10 10, 0 0))"),
            (2, 3, 1, "POINT (10 -20)")
        ], self.rows('geometry_index'))
        self.assertEqual([
            (1, 1, 1, "SRID=4326;POINT (2.29 48.85)"),
            (2, 2, 1, "SRID=4326;POINT (4.83 45.76)")
        ], self.rows('geography_index'))

    def test_reindex_is_idempotent(self):
        self.job().run('resources reindex')
        geometries = self.rows('geometry_index')
        geographies = self.rows('geography_index')

        self.assertEqual(STATUS_COMPLETED, self.job().run('resources reindex'))
        self.assertEqual(geometries, self.rows('geometry_index'))
        self.assertEqual(geographies, self.rows('geography_index'))

    def test_reindex_annotations_only(self):
        self.assertEqual(STATUS_COMPLETED, self.job().run('annotations reindex'))
        self.assertEqual([], self.rows('geometry_index'))
        self.assertEqual(
            [(1, 4, 1, "SRID=4326;POINT (1 2)")], self.rows('geography_index')
        )

    def test_reindex_removes_stale_rows(self):
        self.job().run('resources reindex')
        with self.db.begin() as conn:
            conn.execute(sql_text("DELETE FROM value WHERE resource_id = 2"))
        self.job().run('resources reindex')
        self.assertEqual(
            [1], [row[1] for row in self.rows('geography_index')]
        )

    def test_set_as_geography(self):
        with self.db.begin() as conn:
            conn.execute(sql_text("UPDATE value SET lang = 'fr'"))
        self.assertEqual(STATUS_COMPLETED, self.job().run('resources geography'))

        values = self.values()
        self.assertEqual(
            ('geometry:geography', None), (values[1][2], values[1][4])
        )
        # coordinates and other resources are not changed
        self.assertEqual('geography:coordinates', values[3][2])
        self.assertEqual('geometry:position', values[4][2])
        self.assertEqual('literal', values[2][2])

        self.assertEqual(
            [(1, 3, 1, "POINT (10 -20)")], self.rows('geometry_index')
        )
        self.assertEqual([
            "SRID=4326;POINT (2.29 48.85)",
            "SRID=4326;POLYGON ((0 0, 10 0, 10 10, 0 0))",
            "SRID=4326;POINT (4.83 45.76)"
        ], [row[3] for row in self.rows('geography_index')])

    def test_set_as_geometry_keeps_srid(self):
        self.assertEqual(STATUS_COMPLETED, self.job().run('resources geometry'))
        self.assertEqual([
            "SRID=4326;POINT (2.29 48.85)",
            "POLYGON ((0 0, 10 0, 10 10, 0 0))",
            "POINT (10 -20)"
        ], [row[3] for row in self.rows('geometry_index')])
        self.assertEqual(
            ["SRID=4326;POINT (4.83 45.76)"],
            [row[3] for row in self.rows('geography_index')]
        )

    def test_invalid_values_are_skipped(self):
        with self.db.begin() as conn:
            add_value(conn, 2, 'geometry:geography', "MULTIPOINT((1 2),(3 4))")
        with self.assertLogs(level='WARNING') as logs:
            status = self.job().run('resources reindex')
        self.assertEqual(STATUS_COMPLETED, status)
        self.assertIn("MULTIPOINT((1 2),(3 4))", "\n".join(logs.output))
        self.assertEqual(2, len(self.rows('geography_index')))

    def test_check(self):
        with self.db.begin() as conn:
            value_id = add_value(conn, 2, 'geometry:geometry', "POINT(1 2, 3 4)")
        job = self.job()
        inconsistencies = job.check()
        self.assertEqual(1, len(inconsistencies))
        self.assertEqual(value_id, inconsistencies[0].value_id)
        self.assertEqual(2, inconsistencies[0].resource_id)
        self.assertEqual("POINT(1 2, 3 4)", inconsistencies[0].literal)

        with self.assertLogs(level='WARNING') as logs:
            self.assertEqual(STATUS_COMPLETED, job.run('check'))
        self.assertIn("POINT(1 2, 3 4)", logs.output[0])
        self.assertEqual([], self.rows('geometry_index'))

    def test_inconsistent_data_aborts(self):
        with self.db.begin() as conn:
            add_value(conn, 2, 'geometry:geometry', "POINT(1 2, 3 4)")
        for mode in ['resources reindex', 'annotations geography', 'cartography']:
            with self.assertLogs(level='ERROR'):
                self.assertEqual(STATUS_ABORTED, self.job().run(mode), mode)
        self.assertEqual([], self.rows('geometry_index'))
        self.assertEqual([], self.rows('geography_index'))
        self.assertEqual('geometry:geometry', self.values()[1][2])

    def test_fix_linestring(self):
        with self.db.begin() as conn:
            value_id = add_value(
                conn, 2, 'geometry:geography', "SRID=4326;LINESTRING(1 2)"
            )
        job = self.job()
        self.assertEqual(STATUS_ABORTED, job.run('resources reindex'))

        self.assertEqual(STATUS_COMPLETED, job.run('fix linestring'))
        values = dict((row[0], row[3]) for row in self.values())
        self.assertEqual("SRID=4326;POINT (1 2)", values[value_id])
        # resource of the fixed value is reindexed
        self.assertEqual([
            (1, 2, 1, "SRID=4326;POINT (4.83 45.76)"),
            (2, 2, 1, "SRID=4326;POINT (1 2)")
        ], self.rows('geography_index'))

        self.assertEqual(STATUS_COMPLETED, job.run('resources reindex'))

    def test_cartography(self):
        with self.db.begin() as conn:
            add_resource(conn, 10, ANNOTATION_TARGET)
            add_resource(conn, 11, ANNOTATION_TARGET)
            # target located on a media
            add_value(conn, 10, 'geometry:geography', "POINT(10 20)", RDF_VALUE)
            add_value(conn, 10, 'resource', None, OA_HAS_SELECTOR, 3)
            # target located on an item
            add_value(conn, 11, 'geometry:geometry', "POINT(2.29 48.85)", RDF_VALUE)
            add_value(conn, 11, 'resource', None, OA_HAS_SELECTOR, 1)
            # other property is not changed
            add_value(conn, 11, 'geometry:geometry', "POINT(5 5)", 1)

        self.assertEqual(STATUS_COMPLETED, self.job().run('cartography'))

        types = dict(
            ((row[1], row[3]), row[2]) for row in self.values()
        )
        self.assertEqual('geometry:geometry', types[(10, "POINT(10 20)")])
        self.assertEqual('geometry:geography', types[(11, "POINT(2.29 48.85)")])
        self.assertEqual('geometry:geometry', types[(11, "POINT(5 5)")])

        self.assertEqual([
            (1, 10, RDF_VALUE, "POINT (10 20)"),
            (2, 11, 1, "POINT (5 5)")
        ], self.rows('geometry_index'))
        self.assertEqual(
            [(1, 11, RDF_VALUE, "SRID=4326;POINT (2.29 48.85)")],
            self.rows('geography_index')
        )

    def test_cartography_requires_properties(self):
        with self.db.begin() as conn:
            conn.execute(sql_text("DELETE FROM property WHERE local_name = 'hasSelector'"))
        with self.assertLogs(level='ERROR'):
            self.assertEqual(STATUS_ABORTED, self.job().run('cartography'))

    def test_truncate(self):
        self.job().run('resources reindex')
        self.assertEqual(STATUS_COMPLETED, self.job().run('truncate'))
        self.assertEqual([], self.rows('geometry_index'))
        self.assertEqual([], self.rows('geography_index'))

    def test_execute_without_params(self):
        job = self.job()
        with self.db.connect() as conn:
            job.execute(
                conn, "SELECT id FROM resource WHERE id IN :ids",
                {'ids': [1]}, ['ids']
            )
            # defaults of a previous call are not reused
            rows = job.execute(conn, "SELECT count(*) FROM resource")
            self.assertEqual(4, rows.scalar())
        self.assertIsNone(IndexGeometriesJob.execute.__defaults__[0])
        self.assertIsNone(IndexGeometriesJob.execute.__defaults__[1])

    def test_stop(self):
        job = self.job(should_stop=lambda: True)
        self.assertEqual(STATUS_STOPPED, job.run('resources reindex'))
        self.assertEqual([], self.rows('geography_index'))

    def test_stop_between_resources(self):
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 1

        self.assertEqual(
            STATUS_STOPPED, self.job(should_stop=should_stop).run('resources reindex')
        )
        # first resource is indexed
        self.assertEqual(
            [1], [row[1] for row in self.rows('geography_index')]
        )

    def test_storage_failure(self):
        job = self.job({'geography_table': 'missing_index'})
        with self.assertLogs(level='ERROR') as logs:
            self.assertEqual(STATUS_ERROR, job.run('resources reindex'))
        self.assertIn("missing_index", logs.output[-1])
