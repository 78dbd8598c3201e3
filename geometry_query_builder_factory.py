from errors import UnsupportedDialectOperation
from geometry_query_builder_mysql import (
    GeometryQueryBuilderMysql, GeometryQueryBuilderMysqlLegacy
)
from geometry_query_builder_postgres import GeometryQueryBuilderPostgres


def create_geometry_query_builder(dialect, normalizer, config, logger):
    """Factory function to create the GeometryQueryBuilder of a dialect

    :param DialectContext dialect: Database capabilities
    :param GeometryQueryNormalizer normalizer: Geo query normalizer
    :param obj config: Service config
    :param Logger logger: Application logger
    """
    if dialect.is_postgres and dialect.is_mysql_modern_spatial:
        raise UnsupportedDialectOperation(
            "Database cannot be both PostgreSQL and MySQL: %s" % (dialect,)
        )

    if dialect.is_postgres:
        return GeometryQueryBuilderPostgres(normalizer, config, logger)
    elif dialect.is_mysql_modern_spatial:
        return GeometryQueryBuilderMysql(normalizer, config, logger)
    else:
        # old MySQL, MariaDB or unknown database
        logger.debug(
            "Using legacy spatial functions for %s %s" % (
                dialect.db, dialect.version
            )
        )
        return GeometryQueryBuilderMysqlLegacy(normalizer, config, logger)
