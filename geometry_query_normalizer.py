import math
import re
from collections import OrderedDict

from errors import InvalidGeometry, InvalidQueryPredicate
from wkt_parser import parse_wkt, split_srid


NUMERIC_RE = re.compile(r'^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?\s*$')

# about half of the earth circumference
MAX_RADIUS = {
    'km': 20038,
    'm': 20038000
}

UNITS = ['km', 'm']

# the first valid predicate wins
PREDICATE_KEYS = ['around', 'box', 'mapbox', 'zone', 'area']

MODES = ['geometry', 'geography']


def is_numeric(value):
    """Return whether value is a finite number or a numeric string."""
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        if NUMERIC_RE.match(value) is None:
            return False
    elif not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(float(value))
    except (OverflowError, ValueError):
        # e.g. 10 ** 400
        return False


def to_number(value):
    """Convert a numeric value into an int or a float.

    :param int|float|str value: Value accepted by is_numeric
    """
    if not is_numeric(value):
        raise InvalidQueryPredicate("%r is not a finite number" % (value,))
    if isinstance(value, (int, float)):
        return value
    value = value.strip()
    try:
        return int(value)
    except ValueError:
        return float(value)


def is_blank(value):
    return value is None or value == '' or value == [] or value == {}


def geo_filters(geo):
    """Return the list of filters of a single or batch geo query."""
    if isinstance(geo, (list, tuple)):
        return list(geo)
    if is_batch(geo):
        return list(geo.values())
    return [geo]


def is_batch(geo):
    """Return whether a geo query is a numerically indexed list of filters."""
    if isinstance(geo, (list, tuple)):
        return True
    if isinstance(geo, dict) and geo:
        return all(
            isinstance(key, int) or (isinstance(key, str) and key.isdigit())
            for key in geo.keys()
        )
    return False


class GeometryQueryNormalizer():
    """GeometryQueryNormalizer class

    Normalize geo filters of a search query (around a point, box, map box,
    zone and area).

    A filter keeps only its first valid predicate, in the order around, box,
    mapbox, zone, area. Invalid filters are removed. The input can be a
    single filter or a list of filters, from a front-end form or the api.

    Common for geometry and geography:
        [geo][property] = 'dcterms:spatial' or another one (term or id)
        [geo][srid] = srid
        [geo][mode] = 'geometry' or 'geography'

    Geometry (for flat image or projected map):
        [geo][around][x], [geo][around][y], [geo][around][radius]
        [geo][box] = [left x, top y, right x, bottom y]
                     or [[left, top], [right, bottom]] or "x1 y1 x2 y2"
        [geo][zone] = "wkt"

    Geography:
        [geo][around][latitude], [geo][around][longitude],
        [geo][around][radius], [geo][around][unit] = 'km' (default) or 'm'
        [geo][mapbox] = [top lat, left long, bottom lat, right long]
                        or [[top, left], [bottom, right]]
                        or "lat1 long1 lat2 long2"
        [geo][area] = "wkt"
    """

    def __init__(self, property_resolver, logger):
        """Constructor

        :param PropertyResolver property_resolver: Property resolver
        :param Logger logger: Application logger
        """
        self.property_resolver = property_resolver
        self.logger = logger

    def normalize(self, query):
        """Return a copy of a search query with a cleaned 'geo' key.

        The key 'geo' is removed if no filter is valid.

        :param dict query: Search query
        """
        query = dict(query or {})
        if is_blank(query.get('geo')):
            query.pop('geo', None)
            return query

        geo = self.normalize_geo(query['geo'])
        if geo:
            query['geo'] = geo
        else:
            query.pop('geo')
        return query

    def normalize_geo(self, geo):
        """Normalize a single filter or a list of filters.

        Return the same shape with invalid filters removed, or None.

        :param dict|list geo: Geo query
        """
        if isinstance(geo, (list, tuple)):
            filters = [self.normalize_filter(item) for item in geo]
            return [item for item in filters if item] or None

        if not isinstance(geo, dict):
            return None

        if is_batch(geo):
            filters = OrderedDict()
            for key, item in geo.items():
                item = self.normalize_filter(item)
                if item:
                    filters[key] = item
            return filters or None

        return self.normalize_filter(geo)

    def normalize_filter(self, geo):
        """Normalize one filter, or return None if it has no valid predicate.

        :param dict geo: Geo filter
        """
        if not isinstance(geo, dict):
            return None

        result = OrderedDict()

        property_id = self.property_resolver.resolve(geo.get('property'))
        if property_id:
            result['property'] = property_id

        srid = self.normalize_srid(geo.get('srid'))
        if srid:
            result['srid'] = srid

        if geo.get('mode') in MODES:
            result['mode'] = geo['mode']

        normalizers = {
            'around': self.normalize_around,
            'box': self.normalize_box,
            'mapbox': self.normalize_map_box,
            'zone': self.normalize_zone,
            'area': self.normalize_zone
        }
        for key in PREDICATE_KEYS:
            if is_blank(geo.get(key)):
                continue
            try:
                result[key] = normalizers[key](geo[key])
            except InvalidQueryPredicate as e:
                self.logger.debug("Skipped geo %s: %s" % (key, e))
                continue
            return result

        return None

    def normalize_around(self, around):
        """Validate a geographic or geometric 'around' predicate.

        :param dict around: Point and radius
        """
        if not isinstance(around, dict):
            raise InvalidQueryPredicate("Around is not a dict")
        around = {
            key: value for key, value in around.items()
            if value is not None and value != ''
        }

        if 'latitude' in around:
            return self.normalize_around_geography(around)

        for key in ['x', 'y', 'radius']:
            if key not in around:
                raise InvalidQueryPredicate("Missing %s" % key)
            if not is_numeric(around[key]):
                raise InvalidQueryPredicate("%s is not a number" % key)
        # zero radius is same as no radius
        if to_number(around['radius']) == 0:
            raise InvalidQueryPredicate("Missing radius")

        return OrderedDict([
            ('x', to_number(around['x'])),
            ('y', to_number(around['y'])),
            ('radius', to_number(around['radius']))
        ])

    def normalize_around_geography(self, around):
        for key in ['latitude', 'longitude', 'radius']:
            if key not in around:
                raise InvalidQueryPredicate("Missing %s" % key)
            if not is_numeric(around[key]):
                raise InvalidQueryPredicate("%s is not a number" % key)

        latitude = to_number(around['latitude'])
        longitude = to_number(around['longitude'])
        radius = to_number(around['radius'])
        if not -90 <= latitude <= 90:
            raise InvalidQueryPredicate("Latitude out of range")
        if not -180 <= longitude <= 180:
            raise InvalidQueryPredicate("Longitude out of range")
        if radius <= 0:
            raise InvalidQueryPredicate("Radius must be positive")

        unit = around.get('unit')
        if unit not in UNITS:
            unit = 'km'
        if radius > MAX_RADIUS[unit]:
            raise InvalidQueryPredicate("Radius too big")

        return OrderedDict([
            ('latitude', latitude),
            ('longitude', longitude),
            ('radius', radius),
            ('unit', unit)
        ])

    def normalize_box(self, box):
        """Return a box as [left, top, right, bottom].

        The separator of a string box can be anything except '.', '+' and '-'.

        :param list|str box: Box as 4 numbers, 2 pairs or a string
        """
        if isinstance(box, (list, tuple)):
            if len(box) == 4:
                coords = list(box)
            elif (
                len(box) == 2
                and all(
                    isinstance(pair, (list, tuple)) and len(pair) == 2
                    for pair in box
                )
            ):
                coords = [box[0][0], box[0][1], box[1][0], box[1][1]]
            else:
                raise InvalidQueryPredicate("Box requires 4 coordinates")
        elif isinstance(box, str):
            coords = re.sub(r'[^0-9.+-]+', ' ', box).split()
            if len(coords) != 4:
                raise InvalidQueryPredicate("Box requires 4 coordinates")
        else:
            raise InvalidQueryPredicate("Invalid box")

        if not all(is_numeric(coord) for coord in coords):
            raise InvalidQueryPredicate("Box coordinates are not numbers")

        left, top, right, bottom = [to_number(coord) for coord in coords]
        if left == right or top == bottom:
            raise InvalidQueryPredicate("Box is degenerated")
        return [left, top, right, bottom]

    def normalize_map_box(self, mapbox):
        """Return a map box as [top lat, left long, bottom lat, right long].

        The coordinates stay in geographic order, not in box order.

        :param list|str mapbox: Map box
        """
        top, left, bottom, right = self.normalize_box(mapbox)
        if not (-90 <= top <= 90 and -90 <= bottom <= 90):
            raise InvalidQueryPredicate("Latitude out of range")
        if not (-180 <= left <= 180 and -180 <= right <= 180):
            raise InvalidQueryPredicate("Longitude out of range")
        return [top, left, bottom, right]

    def normalize_zone(self, zone):
        """Return a well-formed WKT, without any SRID prefix.

        :param str zone: WKT
        """
        if not isinstance(zone, str):
            raise InvalidQueryPredicate("Zone is not a string")
        zone = zone.strip()
        try:
            parse_wkt(zone)
        except InvalidGeometry as e:
            raise InvalidQueryPredicate(str(e)) from e
        srid, zone = split_srid(zone)
        return zone

    def normalize_srid(self, srid):
        if is_numeric(srid):
            srid = int(to_number(srid))
            return srid if srid > 0 else 0
        return 0
