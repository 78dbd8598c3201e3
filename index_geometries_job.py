import re
from collections import OrderedDict, namedtuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import bindparam
from sqlalchemy.sql import text as sql_text

from data_types import WKT_DATA_TYPES, data_type_names
from errors import StorageFailure, SyncInconsistency
from wkt_parser import split_srid


PROCESS_MODES = [
    'resources reindex',
    'resources geometry',
    'resources geography',
    'annotations reindex',
    'annotations geometry',
    'annotations geography',
    'cartography',
    'check',
    'fix linestring',
    'truncate'
]

RESOURCE_TYPES = {
    'resources': [
        'Omeka\\Entity\\Item',
        'Omeka\\Entity\\ItemSet',
        'Omeka\\Entity\\Media'
    ],
    'annotations': [
        'Annotate\\Entity\\Annotation',
        'Annotate\\Entity\\AnnotationBody',
        'Annotate\\Entity\\AnnotationTarget'
    ]
}

ANNOTATION_TARGET = 'Annotate\\Entity\\AnnotationTarget'
MEDIA = 'Omeka\\Entity\\Media'

STATUS_COMPLETED = 'completed'
STATUS_ABORTED = 'aborted'
STATUS_STOPPED = 'stopped'
STATUS_ERROR = 'error'

# log progress every N resources
PROGRESS_STEP = 100

# Suspicious literal of a value
Inconsistency = namedtuple(
    'Inconsistency', ['value_id', 'resource_id', 'literal', 'reason']
)

GEOMETRY_TYPE_RE = re.compile(r'^\s*([A-Z]+)')
RING_RE = re.compile(r'\(([^()]*)\)')


def coordinate_pairs(text):
    """Return the number of coordinate pairs of a WKT list '(x y, x y)'."""
    text = text.strip().strip('()').strip()
    if not text:
        return 0
    return len(text.split(','))


def check_literal(literal):
    """Return the reason why a WKT literal is suspicious, or None.

    Only problems that the input forms let through are checked:
    - a point with a comma
    - a line string with less than 2 coordinate pairs
    - a polygon ring with less than 4 coordinate pairs

    :param str literal: Stored WKT, optionally prefixed with 'SRID=<n>;'
    """
    srid, wkt = split_srid(literal or '')
    wkt = wkt.upper()
    match = GEOMETRY_TYPE_RE.match(wkt)
    if match is None:
        return None

    geometry_type = match.group(1)
    body = wkt[match.end():]
    if geometry_type == 'POINT':
        if ',' in body:
            return "point with a comma"
    elif geometry_type == 'LINESTRING':
        if coordinate_pairs(body) < 2:
            return "line string with less than 2 coordinates"
    elif geometry_type == 'POLYGON':
        for ring in RING_RE.findall(body):
            if coordinate_pairs(ring) < 4:
                return "polygon ring with less than 4 coordinates"
    return None


def linestring_to_point(literal):
    """Convert a line string with a single coordinate pair into a point.

    Return the new literal, or None if the literal is not such a line string.
    """
    srid, wkt = split_srid(literal or '')
    match = re.match(
        r'^\s*LINESTRING\s*\(\s*([^,()]+?)\s*\)\s*$', wkt, re.IGNORECASE
    )
    if match is None:
        return None
    point = "POINT (%s)" % ' '.join(match.group(1).split())
    if srid is not None:
        return "SRID=%d;%s" % (srid, point)
    return point


class JobStopped(Exception):
    """Raised when a job is stopped between two statements"""
    pass


class JobAborted(Exception):
    """Raised when a job cannot run on the current data"""
    pass


class IndexGeometriesJob():
    """IndexGeometriesJob class

    Bulk maintenance of the geometry and geography index tables, run as a
    single background task with a process mode.
    """

    def __init__(self, db, index, property_resolver, logger, should_stop=None):
        """Constructor

        :param Engine db: SQLAlchemy engine of the host database
        :param GeometryIndex index: Index tables
        :param PropertyResolver property_resolver: Property resolver
        :param Logger logger: Application logger
        :param callable should_stop: Return True to stop the job
        """
        self.db = db
        self.index = index
        self.property_resolver = property_resolver
        self.logger = logger
        self.should_stop = should_stop or (lambda: False)

    def run(self, process_mode):
        """Run job and return its status.

        :param str process_mode: One of PROCESS_MODES
        """
        if process_mode not in PROCESS_MODES:
            self.logger.info(
                "Indexing geometries stopped: no mode selected."
            )
            return STATUS_STOPPED

        try:
            if process_mode == 'check':
                self.report(self.check())
            elif process_mode == 'fix linestring':
                self.fix_linestrings()
            elif process_mode == 'truncate':
                self.truncate()
            else:
                # do not amplify corrupt data
                self.ensure_consistent()
                if process_mode == 'cartography':
                    self.index_cartography_targets()
                else:
                    scope, target = process_mode.split(' ')
                    self.reindex(scope, None if target == 'reindex' else target)
        except SyncInconsistency as e:
            self.report(e.inconsistencies)
            self.logger.error(
                "Indexing geometries aborted: %s. Fix them first." % e
            )
            return STATUS_ABORTED
        except JobAborted as e:
            self.logger.error("Indexing geometries aborted: %s." % e)
            return STATUS_ABORTED
        except JobStopped:
            self.logger.info("Indexing geometries stopped by user.")
            return STATUS_STOPPED
        except StorageFailure as e:
            self.logger.error("Indexing geometries failed: %s" % e)
            return STATUS_ERROR

        return STATUS_COMPLETED

    def check_stop(self):
        if self.should_stop():
            raise JobStopped()

    def execute(self, conn, sql, params=None, expanding=None):
        """Execute SQL with bound params, with expanding params for lists."""
        params = params or {}
        statement = sql_text(sql)
        if expanding:
            statement = statement.bindparams(
                *[bindparam(name, expanding=True) for name in expanding]
            )
        self.logger.debug(f"job query: {sql}")
        self.logger.debug(f"params: {params}")
        return conn.execute(statement, params)

    def check(self):
        """Return suspicious WKT literals of values as Inconsistency list."""
        sql = """
            SELECT id, resource_id, value
            FROM value
            WHERE type IN :types
            ORDER BY id;
        """
        try:
            with self.db.connect() as conn:
                rows = self.execute(
                    conn, sql, {'types': WKT_DATA_TYPES}, ['types']
                ).mappings().all()
        except SQLAlchemyError as e:
            raise StorageFailure("Could not check values: %s" % e) from e

        inconsistencies = []
        for row in rows:
            reason = check_literal(row['value'])
            if reason is not None:
                inconsistencies.append(Inconsistency(
                    row['id'], row['resource_id'], row['value'], reason
                ))

        self.logger.info(
            "Checked %d geometric values: %d inconsistencies found."
            % (len(rows), len(inconsistencies))
        )
        return inconsistencies

    def ensure_consistent(self):
        inconsistencies = self.check()
        if inconsistencies:
            raise SyncInconsistency(inconsistencies)

    def report(self, inconsistencies):
        for inconsistency in inconsistencies:
            self.logger.warning(
                "Value #%s of resource #%s: %s (%s)" % (
                    inconsistency.value_id, inconsistency.resource_id,
                    inconsistency.reason, inconsistency.literal
                )
            )

    def reindex(self, scope, target=None):
        """Rebuild index rows of the resources of a scope.

        :param str scope: 'resources' or 'annotations'
        :param str target: Set to 'geometry' or 'geography' to set the data
                           type of all WKT values first
        """
        resource_types = RESOURCE_TYPES[scope]
        if target is not None:
            data_type = 'geometry:%s' % target
            sql = """
                UPDATE value
                SET type = :data_type, lang = NULL,
                    value_resource_id = NULL, uri = NULL
                WHERE type IN :types
                AND resource_id IN (
                    SELECT id FROM resource
                    WHERE resource_type IN :resource_types
                );
            """
            try:
                with self.db.begin() as conn:
                    self.execute(conn, sql, {
                        'data_type': data_type, 'types': WKT_DATA_TYPES,
                        'resource_types': resource_types
                    }, ['types', 'resource_types'])
            except SQLAlchemyError as e:
                raise StorageFailure(
                    "Could not update data types: %s" % e
                ) from e
            self.logger.info(
                'All geometric values for %s have now the data type "%s".'
                % (scope, data_type)
            )
            self.check_stop()

        self.index_resources(self.resource_ids(resource_types))
        self.logger.info("Geometries were indexed for %s." % scope)

    def index_cartography_targets(self):
        """Set data types of annotation targets and rebuild their index rows.

        Targets whose selector is a media locate a part of an image, so they
        are geometries. Other targets are geographies.
        """
        rdf_value = self.property_resolver.resolve('rdf:value')
        oa_has_selector = self.property_resolver.resolve('oa:hasSelector')
        if rdf_value is None or oa_has_selector is None:
            raise JobAborted(
                "properties rdf:value and oa:hasSelector are required"
            )

        set_type_sql = """
            UPDATE value
            SET type = :data_type, lang = NULL,
                value_resource_id = NULL, uri = NULL
            WHERE type IN :types
            AND property_id = :rdf_value
            AND resource_id IN ({targets});
        """
        targets_sql = """
            SELECT id FROM resource WHERE resource_type = :target_type
        """
        # derived table, as MySQL cannot select from the updated table
        media_targets_sql = """
            SELECT resource_id FROM (
                SELECT DISTINCT selector.resource_id
                FROM value selector
                JOIN resource target ON target.id = selector.resource_id
                    AND target.resource_type = :target_type
                JOIN resource media ON media.id = selector.value_resource_id
                    AND media.resource_type = :media_type
                WHERE selector.property_id = :oa_has_selector
            ) AS media_targets
        """
        params = {
            'types': WKT_DATA_TYPES, 'rdf_value': rdf_value,
            'oa_has_selector': oa_has_selector,
            'target_type': ANNOTATION_TARGET, 'media_type': MEDIA
        }
        try:
            with self.db.begin() as conn:
                self.execute(
                    conn, set_type_sql.format(targets=targets_sql),
                    dict(params, data_type='geometry:geography'), ['types']
                )
                self.execute(
                    conn, set_type_sql.format(targets=media_targets_sql),
                    dict(params, data_type='geometry:geometry'), ['types']
                )
        except SQLAlchemyError as e:
            raise StorageFailure(
                "Could not update data types of annotation targets: %s" % e
            ) from e
        self.logger.info(
            "All geometric values for cartographic annotation targets were "
            "updated according to their type (describe or locate)."
        )
        self.check_stop()

        self.index_resources(self.resource_ids([ANNOTATION_TARGET]))
        self.logger.info("Geometries were indexed for annotation targets.")

    def fix_linestrings(self):
        """Convert line strings with a single coordinate pair into points,
        then reindex their resources.
        """
        sql = """
            SELECT id, resource_id, value
            FROM value
            WHERE type IN :types
            AND UPPER(value) LIKE '%LINESTRING%'
            ORDER BY id;
        """
        update_sql = "UPDATE value SET value = :value WHERE id = :id;"
        resource_ids = []
        count = 0
        try:
            with self.db.begin() as conn:
                rows = self.execute(
                    conn, sql, {'types': WKT_DATA_TYPES}, ['types']
                ).mappings().all()
                for row in rows:
                    literal = linestring_to_point(row['value'])
                    if literal is None:
                        continue
                    self.execute(
                        conn, update_sql, {'value': literal, 'id': row['id']}
                    )
                    self.logger.info(
                        "Value #%s of resource #%s fixed: %s => %s" % (
                            row['id'], row['resource_id'], row['value'],
                            literal
                        )
                    )
                    count += 1
                    if row['resource_id'] not in resource_ids:
                        resource_ids.append(row['resource_id'])
        except SQLAlchemyError as e:
            raise StorageFailure("Could not fix line strings: %s" % e) from e

        self.logger.info("%d line strings were fixed." % count)
        if resource_ids:
            self.index_resources(resource_ids)

    def truncate(self):
        """Empty both index tables."""
        tables = list(self.index.tables.values())
        dialect_name = self.db.dialect.name
        if dialect_name == 'postgresql':
            statements = ["TRUNCATE TABLE %s;" % ", ".join(tables)]
        elif dialect_name in ['mysql', 'mariadb']:
            statements = (
                ["SET foreign_key_checks = 0;"]
                + ["TRUNCATE TABLE `%s`;" % table for table in tables]
                + ["SET foreign_key_checks = 1;"]
            )
        else:
            statements = ["DELETE FROM %s;" % table for table in tables]

        try:
            with self.db.begin() as conn:
                for sql in statements:
                    self.execute(conn, sql)
        except SQLAlchemyError as e:
            raise StorageFailure("Could not truncate tables: %s" % e) from e

        self.logger.info(
            'Tables "%s" were truncated.' % '" and "'.join(tables)
        )

    def resource_ids(self, resource_types):
        sql = """
            SELECT id FROM resource
            WHERE resource_type IN :resource_types
            ORDER BY id;
        """
        try:
            with self.db.connect() as conn:
                result = self.execute(
                    conn, sql, {'resource_types': resource_types},
                    ['resource_types']
                )
                return [row[0] for row in result]
        except SQLAlchemyError as e:
            raise StorageFailure("Could not list resources: %s" % e) from e

    def resource_values(self, conn, resource_id):
        sql = """
            SELECT id, resource_id, property_id, type, value
            FROM value
            WHERE resource_id = :resource_id
            AND type IN :types
            ORDER BY id;
        """
        result = self.execute(conn, sql, {
            'resource_id': resource_id, 'types': data_type_names()
        }, ['types'])
        return [dict(row) for row in result.mappings()]

    def index_resources(self, resource_ids):
        """Sync index rows of resources, one transaction per resource.

        Invalid geometries are logged and skipped.

        :param list[int] resource_ids: Resource IDs
        """
        totals = OrderedDict([('updated', 0), ('inserted', 0), ('deleted', 0)])
        for i, resource_id in enumerate(resource_ids):
            self.check_stop()
            try:
                with self.db.begin() as conn:
                    values = self.resource_values(conn, resource_id)
                    summary = self.index.sync_resource(
                        conn, resource_id, values, skip_invalid=True
                    )
            except SQLAlchemyError as e:
                raise StorageFailure(
                    "Could not read values of resource #%s: %s"
                    % (resource_id, e)
                ) from e
            for key in totals:
                totals[key] += summary[key]
            if (i + 1) % PROGRESS_STEP == 0:
                self.logger.info(
                    "%d/%d resources indexed." % (i + 1, len(resource_ids))
                )

        self.logger.info(
            "%d resources indexed: %d rows updated, %d inserted, %d deleted."
            % (
                len(resource_ids), totals['updated'], totals['inserted'],
                totals['deleted']
            )
        )
        return totals
