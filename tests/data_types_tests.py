import unittest

from data_types import (
    KML_LITERAL, WKT_LITERAL, GeographyCoordinatesDataType, GeographyDataType,
    GeometryCoordinatesDataType, GeometryDataType, GeometryPositionDataType,
    data_type_names, get_data_type, index_tables
)
from errors import InvalidGeometry
from geometries import GeometryType, point


class DataTypesTestCase(unittest.TestCase):
    """Test case for geometric data types of values"""

    def test_geometry(self):
        data_type = GeometryDataType()
        self.assertEqual(GeometryType.GEOMETRY, data_type.geometry_type)
        self.assertEqual("POINT (1 2)", data_type.normalize("point(1 2)"))
        self.assertTrue(data_type.is_valid("MULTIPOINT((1 2),(3 4))"))
        self.assertTrue(data_type.is_valid({'@value': "point(1 2)"}))
        self.assertFalse(data_type.is_valid("POINT(1 2, 3 4)"))
        self.assertFalse(data_type.is_valid(""))

    def test_geometry_rejects_coordinates(self):
        # "x,y" is not WKT, only the coordinates data types accept it
        for data_type in [GeometryDataType(), GeographyDataType()]:
            self.assertFalse(data_type.is_valid("10,20"), data_type.name)
            with self.assertRaises(InvalidGeometry):
                data_type.geometry_from_value("10,20")
            with self.assertRaises(InvalidGeometry):
                data_type.geometry_from_value("48.85,2.29")

    def test_geometry_rejects_infinite_coordinates(self):
        self.assertFalse(GeometryDataType().is_valid("POINT(1e400 2)"))
        self.assertFalse(GeometryCoordinatesDataType().is_valid("1" * 400 + ",2"))

    def test_geography(self):
        data_type = GeographyDataType()
        self.assertEqual(GeometryType.GEOGRAPHY, data_type.geometry_type)
        self.assertTrue(data_type.is_valid("SRID=4326;POINT(2.29 48.85)"))
        self.assertFalse(data_type.is_valid("MULTIPOINT((1 2),(3 4))"))
        self.assertEqual(
            "SRID=4326;POINT (2.29 48.85)",
            data_type.normalize(" srid=4326;point(2.29 48.85) ")
        )

    def test_geometry_json_ld(self):
        self.assertEqual({
            '@value': "POINT (2.29 48.85)",
            '@type': WKT_LITERAL,
            'srid': 4326
        }, GeographyDataType().json_ld("SRID=4326;POINT(2.29 48.85)"))
        self.assertEqual({
            '@value': "LINESTRING (0 0, 1 1)",
            '@type': WKT_LITERAL
        }, GeometryDataType().json_ld("LINESTRING(0 0, 1 1)"))

    def test_geometry_coordinates(self):
        data_type = GeometryCoordinatesDataType()
        self.assertEqual(GeometryType.GEOMETRY, data_type.geometry_type)
        self.assertEqual("1.5,-2", data_type.normalize(" 1.5 , -2 "))
        self.assertEqual(point(1.5, -2), data_type.geometry_from_value("1.5,-2"))
        self.assertFalse(data_type.is_valid("1.5"))
        with self.assertRaises(InvalidGeometry):
            data_type.normalize("a,b")
        self.assertEqual(
            {'@value': "1.5,-2", '@type': KML_LITERAL},
            data_type.json_ld("1.5,-2")
        )

    def test_geometry_coordinates_stored_as_wkt(self):
        data_type = GeometryCoordinatesDataType()
        self.assertEqual(point(3, 4), data_type.geometry_from_value("POINT(3 4)"))
        self.assertTrue(data_type.is_valid("POINT(3 4)"))
        self.assertTrue(data_type.is_valid({'@value': "point(3 4)"}))
        self.assertFalse(data_type.is_valid("POINT(3)"))

    def test_geometry_position(self):
        data_type = GeometryPositionDataType()
        # y axis goes down from the top left corner of the image
        self.assertEqual(
            "POINT (10 -20)", data_type.geometry_from_value("10,20").to_wkt()
        )
        self.assertTrue(data_type.is_valid("10,20"))
        self.assertFalse(data_type.is_valid("10.5,20"))
        self.assertFalse(data_type.is_valid("-10,20"))
        self.assertEqual(
            {'@value': {'x': 10, 'y': 20}}, data_type.json_ld("10,20")
        )

    def test_geography_coordinates(self):
        data_type = GeographyCoordinatesDataType()
        self.assertEqual(GeometryType.GEOGRAPHY, data_type.geometry_type)
        self.assertEqual("48.85,2.29", data_type.normalize("+48.85, +2.29"))
        self.assertEqual(
            "POINT (2.29 48.85)",
            data_type.geometry_from_value("48.85,2.29").to_wkt()
        )
        self.assertTrue(data_type.is_valid("-90,180"))
        self.assertFalse(data_type.is_valid("91,0"))
        self.assertFalse(data_type.is_valid("0,181"))

    def test_registry(self):
        self.assertIsInstance(
            get_data_type('geometry:geography'), GeographyDataType
        )
        self.assertIsNone(get_data_type('literal'))
        self.assertEqual(
            ['geometry:geography', 'geography:coordinates'],
            data_type_names(GeometryType.GEOGRAPHY)
        )
        self.assertEqual(
            ['geometry:geometry', 'geometry:coordinates', 'geometry:position'],
            data_type_names(GeometryType.GEOMETRY)
        )
        self.assertEqual(5, len(data_type_names()))

    def test_index_tables(self):
        self.assertEqual({
            GeometryType.GEOMETRY: 'geometry_index',
            GeometryType.GEOGRAPHY: 'geography_index'
        }, index_tables({}))
        tables = index_tables({'geography_table': 'data_type_geography'})
        self.assertEqual(
            'data_type_geography', tables[GeometryType.GEOGRAPHY]
        )
