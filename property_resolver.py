import re

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text as sql_text

from errors import StorageFailure


TERM_RE = re.compile(r'^[a-z0-9_-]+:[a-z0-9_-]+$', re.IGNORECASE)


class PropertyResolver():
    """PropertyResolver class

    Get property ids from property terms ('prefix:localName') or ids.
    Resolved terms are cached for the lifetime of the resolver.
    """

    def __init__(self, db, logger):
        """Constructor

        :param Engine db: SQLAlchemy engine of the host database
        :param Logger logger: Application logger
        """
        self.db = db
        self.logger = logger
        self.properties = {}

    def resolve(self, property):
        """Return the property id, or None if unknown.

        :param str|int property: Property term or id
        """
        if property is None or isinstance(property, bool):
            return None
        if isinstance(property, int):
            return property if property > 0 else None

        property = str(property).strip()
        if not property:
            return None
        if property.isdigit():
            return int(property) or None

        if property in self.properties:
            return self.properties[property]

        if not TERM_RE.match(property):
            self.properties[property] = None
            return None

        prefix, local_name = property.split(':')
        sql = sql_text("""
            SELECT property.id
            FROM property
            JOIN vocabulary ON vocabulary.id = property.vocabulary_id
            WHERE property.local_name = :local_name
            AND vocabulary.prefix = :prefix;
        """)
        try:
            # connect to database (for read-only access)
            with self.db.connect() as conn:
                row = conn.execute(
                    sql, {'local_name': local_name, 'prefix': prefix}
                ).fetchone()
        except SQLAlchemyError as e:
            raise StorageFailure(
                "Could not resolve property '%s': %s" % (property, e)
            ) from e

        property_id = row[0] if row else None
        if property_id is None:
            self.logger.debug("Unknown property term '%s'" % property)
        self.properties[property] = property_id
        return property_id
