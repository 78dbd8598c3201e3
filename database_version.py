import re
from collections import namedtuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text as sql_text

from errors import StorageFailure


# Capabilities of the database for spatial queries
DialectContext = namedtuple('DialectContext', [
    'db', 'version', 'is_postgres', 'is_mysql_modern_spatial'
])


def parse_version(version):
    """Return the leading numeric part of a version as a tuple.

    e.g. '10.6.12-MariaDB-0ubuntu0.22.04.1' -> (10, 6, 12)

    :param str version: Server version
    """
    match = re.match(r'\s*(\d+(?:\.\d+)*)', version or '')
    if match is None:
        return ()
    return tuple(int(part) for part in match.group(1).split('.'))


def version_at_least(version, minimum):
    return parse_version(version) >= parse_version(minimum)


class DatabaseVersion():
    """DatabaseVersion class

    Query the database server version once and report its spatial capabilities.
    """

    def __init__(self, db, logger):
        """Constructor

        :param Engine db: SQLAlchemy engine of the host database
        :param Logger logger: Application logger
        """
        self.db = db
        self.logger = logger
        self.__data = None

    def data(self):
        """Return {'db': <name>, 'version': <version>}, queried once."""
        if self.__data is None:
            self.__data = self.query_version()
            self.logger.info(
                "Database is %s %s" % (self.__data['db'], self.__data['version'])
            )
        return self.__data

    def query_version(self):
        """Query the server version."""
        dialect_name = self.db.dialect.name
        try:
            if dialect_name == 'postgresql':
                with self.db.connect() as conn:
                    version = conn.execute(
                        sql_text("SHOW server_version;")
                    ).scalar()
                return {'db': 'postgresql', 'version': version or ''}

            if dialect_name in ['mysql', 'mariadb']:
                with self.db.connect() as conn:
                    rows = conn.execute(
                        sql_text("SHOW VARIABLES LIKE 'version%';")
                    ).fetchall()
                variables = {row[0]: row[1] for row in rows}
                version = variables.get('version', '')
                comment = variables.get('version_comment', '')
                db = 'mysql'
                if 'mariadb' in ("%s %s" % (version, comment)).lower():
                    db = 'mariadb'
                return {'db': db, 'version': version}
        except SQLAlchemyError as e:
            raise StorageFailure(
                "Could not get database version: %s" % e
            ) from e

        return {'db': dialect_name, 'version': ''}

    def dialect_context(self):
        """Return the DialectContext used to compile spatial predicates."""
        data = self.data()
        return DialectContext(
            db=data['db'],
            version=data['version'],
            is_postgres=data['db'] == 'postgresql',
            is_mysql_modern_spatial=self.is_database_recent()
        )

    def support_geometric_search(self):
        """Check if the database has minimum requirements to search geometries."""
        data = self.data()
        if data['db'] == 'postgresql':
            return True
        if data['db'] == 'mysql':
            return version_at_least(data['version'], '5.6.1')
        if data['db'] == 'mariadb':
            return version_at_least(data['version'], '5.3.3')
        return False

    def support_geographic_search(self):
        """Check if the database has minimum requirements to search geographies.

        MariaDB does not support spatial reference systems.
        """
        data = self.data()
        if data['db'] == 'postgresql':
            return True
        if data['db'] == 'mysql':
            return version_at_least(data['version'], '5.6.1')
        return False

    def require_myisam_to_support_geometry(self):
        """Check if spatial indexes require the MyISAM engine."""
        data = self.data()
        if data['db'] == 'mysql':
            return not version_at_least(data['version'], '5.7.14')
        if data['db'] == 'mariadb':
            return not version_at_least(data['version'], '10.2.2')
        return False

    def is_database_recent(self):
        """Check if MySQL or MariaDB supports ST_Distance_Sphere and recent
        spatial indexes.
        """
        data = self.data()
        if data['db'] == 'mysql':
            return version_at_least(data['version'], '5.7.6')
        if data['db'] == 'mariadb':
            return version_at_least(data['version'], '10.2.2')
        return False
