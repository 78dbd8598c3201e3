from collections import OrderedDict, namedtuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text as sql_text

from data_types import DEFAULT_SRID, get_data_type, index_tables
from errors import InvalidGeometry, StorageFailure
from geometries import GeometryType


# Row of an index table, without id and resource
IndexEntry = namedtuple('IndexEntry', ['property_id', 'wkt', 'srid'])

SUMMARY_KEYS = {'update': 'updated', 'insert': 'inserted', 'delete': 'deleted'}


def merge_rows(existing_ids, entries):
    """Pair existing index rows with new entries by position.

    Return a list of operations:
    - ('update', id, entry) while both sequences have items
    - ('insert', None, entry) for extra entries
    - ('delete', id, None) for extra existing rows

    :param list[int] existing_ids: Ids of existing rows, ordered
    :param list[IndexEntry] entries: New entries, ordered
    """
    operations = []
    i = 0
    j = 0
    while i < len(existing_ids) and j < len(entries):
        operations.append(('update', existing_ids[i], entries[j]))
        i += 1
        j += 1
    while j < len(entries):
        operations.append(('insert', None, entries[j]))
        j += 1
    while i < len(existing_ids):
        operations.append(('delete', existing_ids[i], None))
        i += 1
    return operations


class GeometryIndex():
    """GeometryIndex class

    Keep the geometry and geography index tables of a resource in sync with
    its geometric values.
    """

    def __init__(self, config, logger):
        """Constructor

        :param obj config: Service config
        :param Logger logger: Application logger
        """
        self.logger = logger
        self.default_srid = int(config.get('locate_srid', DEFAULT_SRID))
        self.tables = index_tables(config)

    def index_entry(self, value):
        """Convert a value into an IndexEntry for its index table.

        Return (GeometryType, IndexEntry), or None if the value is not
        geometric.

        :param dict value: Value with 'type', 'property_id' and 'value'
        """
        data_type = get_data_type(value.get('type'))
        if data_type is None:
            return None

        geometry = data_type.geometry_from_value(value.get('value'))
        srid = geometry.srid
        if not srid:
            if data_type.geometry_type == GeometryType.GEOGRAPHY:
                srid = self.default_srid
            else:
                srid = 0

        return data_type.geometry_type, IndexEntry(
            int(value['property_id']), geometry.to_wkt(), srid
        )

    def entries_for(self, values, skip_invalid=False):
        """Partition values into index entries by GeometryType.

        :param list[dict] values: Values of a resource, ordered
        :param bool skip_invalid: Set to log and skip invalid geometries
                                  instead of raising InvalidGeometry
        """
        entries = OrderedDict(
            (geometry_type, []) for geometry_type in GeometryType
        )
        for value in values:
            try:
                result = self.index_entry(value)
            except InvalidGeometry as e:
                if not skip_invalid:
                    raise
                self.logger.warning(
                    "Skipping value #%s of resource #%s: %s (%s)" % (
                        value.get('id'), value.get('resource_id'), e,
                        value.get('value')
                    )
                )
                continue
            if result is not None:
                geometry_type, entry = result
                entries[geometry_type].append(entry)
        return entries

    def sync_resource(self, conn, resource_id, values, skip_invalid=False):
        """Update index rows of a resource to mirror its geometric values.

        Existing rows are reused in order, so their ids stay the same when
        the number of values does not change.

        Return counts of updated, inserted and deleted rows.

        :param Connection conn: Database connection inside a transaction
        :param int resource_id: Resource ID
        :param list[dict] values: All values of the resource, ordered
        :param bool skip_invalid: Set to skip invalid geometries
        """
        # parse first, so that an invalid value does not change anything
        entries = self.entries_for(values, skip_invalid)

        summary = OrderedDict([('updated', 0), ('inserted', 0), ('deleted', 0)])
        try:
            for geometry_type, type_entries in entries.items():
                table = self.tables[geometry_type]
                existing_ids = self.existing_ids(conn, table, resource_id)
                for operation, id, entry in merge_rows(existing_ids, type_entries):
                    self.apply(conn, table, resource_id, operation, id, entry)
                    summary[SUMMARY_KEYS[operation]] += 1
        except SQLAlchemyError as e:
            raise StorageFailure(
                "Could not index geometries of resource #%s: %s"
                % (resource_id, e)
            ) from e

        self.logger.debug(
            "Indexed geometries of resource #%s: %s" % (
                resource_id, dict(summary)
            )
        )
        return summary

    def existing_ids(self, conn, table, resource_id):
        sql = sql_text("""
            SELECT id FROM {table}
            WHERE resource_id = :resource_id
            ORDER BY id;
        """.format(table=table))
        result = conn.execute(sql, {'resource_id': resource_id})
        return [row[0] for row in result]

    def apply(self, conn, table, resource_id, operation, id, entry):
        """Execute a merge operation on an index table."""
        if operation == 'update':
            sql = """
                UPDATE {table}
                SET property_id = :property_id,
                    value = ST_GeomFromText(:wkt, :srid)
                WHERE id = :id;
            """
            params = {
                'id': id, 'property_id': entry.property_id,
                'wkt': entry.wkt, 'srid': entry.srid
            }
        elif operation == 'insert':
            sql = """
                INSERT INTO {table} (resource_id, property_id, value)
                VALUES (:resource_id, :property_id,
                    ST_GeomFromText(:wkt, :srid));
            """
            params = {
                'resource_id': resource_id, 'property_id': entry.property_id,
                'wkt': entry.wkt, 'srid': entry.srid
            }
        else:
            sql = "DELETE FROM {table} WHERE id = :id;"
            params = {'id': id}

        sql = sql.format(table=table)
        self.logger.debug(f"index query: {sql}")
        self.logger.debug(f"params: {params}")
        conn.execute(sql_text(sql), params)
