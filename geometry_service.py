import os
from collections import OrderedDict

from sqlalchemy.exc import SQLAlchemyError

from qwc_services_core.database import DatabaseEngine
from data_types import get_data_type
from database_version import DatabaseVersion
from errors import InvalidGeometry, StorageFailure, UnsupportedDialectOperation
from geometry_index import GeometryIndex
from geometry_query_builder_factory import create_geometry_query_builder
from geometry_query_normalizer import GeometryQueryNormalizer
from index_geometries_job import PROCESS_MODES, IndexGeometriesJob
from property_resolver import PropertyResolver
from resource_query import ResourceQuery

ERROR_DETAILS_LOG_ONLY = os.environ.get(
    'ERROR_DETAILS_LOG_ONLY', 'False').lower() == 'true'


class GeometryService():
    """GeometryService class

    Search resources by geometric values, keep the geometry index tables
    in sync with saved resources and run bulk index jobs.
    """

    def __init__(self, tenant, logger, config, db=None):
        """Constructor

        :param str tenant: Tenant ID
        :param Logger logger: Application logger
        :param obj config: Service config
        :param Engine db: Optional SQLAlchemy engine of the host database
        """
        self.tenant = tenant
        self.logger = logger
        self.config = config
        if db is None:
            db_engine = DatabaseEngine()
            if config.get('db_url'):
                db = db_engine.db_engine(config.get('db_url'))
            else:
                db = db_engine.geo_db()
        self.db = db

        self.property_resolver = PropertyResolver(self.db, logger)
        self.normalizer = GeometryQueryNormalizer(
            self.property_resolver, logger
        )
        self.index = GeometryIndex(config, logger)
        self.database_version = DatabaseVersion(self.db, logger)
        self.__query_builder = None

    def query_builder(self):
        """Return GeometryQueryBuilder for the database, created once."""
        if self.__query_builder is None:
            self.__query_builder = create_geometry_query_builder(
                self.database_version.dialect_context(), self.normalizer,
                self.config, self.logger
            )
        return self.__query_builder

    def normalize(self, translator, query):
        """Return normalized geo filters of a search query.

        :param object translator: Translator
        :param dict query: Search query with key 'geo'
        """
        try:
            normalized = self.normalizer.normalize(query)
        except StorageFailure as e:
            return self.storage_error(translator, e)
        return {'query': normalized}

    def search(self, translator, query):
        """Find IDs of resources matching the geo filters of a query.

        Resources are returned once, even when several of their values match.

        :param object translator: Translator
        :param dict query: Search query with key 'geo'
        """
        try:
            normalized = self.normalizer.normalize(query)
            resource_query = ResourceQuery()
            self.query_builder().build_query(resource_query, query)

            sql = resource_query.statement()
            self.logger.debug(f"search query: {resource_query.sql()}")
            self.logger.debug(f"params: {resource_query.params}")
            with self.db.connect() as conn:
                result = conn.execute(sql, resource_query.params)
                resource_ids = [row[0] for row in result]
        except UnsupportedDialectOperation as e:
            self.logger.error(e)
            return {
                'error': translator.tr("error.unsupported_geo_query"),
                'error_code': 400
            }
        except SQLAlchemyError as e:
            return self.storage_error(translator, e)
        except StorageFailure as e:
            return self.storage_error(translator, e)

        return {
            'resources': resource_ids,
            'geo': normalized.get('geo')
        }

    def save_resource(self, translator, resource_id, values):
        """Update index rows of a saved resource from all its values.

        :param object translator: Translator
        :param int resource_id: Resource ID
        :param list[obj] values: Values as
            {'property': <id or term>, 'type': <data type>, 'value': <literal>}
        """
        index_values, validation_errors = self.validate_values(
            translator, values
        )
        if validation_errors:
            return self.error_response(
                translator.tr("error.geometry_validation_failed"),
                {'validation_errors': validation_errors}
            )

        try:
            with self.db.begin() as conn:
                summary = self.index.sync_resource(
                    conn, resource_id, index_values
                )
        except (SQLAlchemyError, StorageFailure) as e:
            return self.storage_error(translator, e)

        return {'resource_id': resource_id, 'summary': summary}

    def validate_values(self, translator, values):
        """Validate values of a resource and return (values, errors).

        Values without a geometric data type are ignored.

        :param object translator: Translator
        :param list[obj] values: Values of the resource
        """
        index_values = []
        validation_errors = []
        for i, value in enumerate(values):
            if not isinstance(value, dict):
                validation_errors.append(
                    "values[%d]: %s" % (i, translator.tr("error.value_is_not_an_object"))
                )
                continue

            data_type = get_data_type(value.get('type'))
            if data_type is None:
                continue

            property_id = self.property_resolver.resolve(value.get('property'))
            if property_id is None:
                validation_errors.append("values[%d]: %s '%s'" % (
                    i, translator.tr("error.unknown_property"),
                    value.get('property')
                ))
                continue

            try:
                data_type.geometry_from_value(value.get('value'))
            except InvalidGeometry as e:
                validation_errors.append("values[%d]: %s (%s)" % (
                    i, translator.tr("error.invalid_geometry"), e
                ))
                continue

            index_values.append(OrderedDict([
                ('property_id', property_id),
                ('type', data_type.name),
                ('value', value.get('value'))
            ]))

        return index_values, validation_errors

    def index_geometries(self, translator, process_mode, should_stop=None):
        """Run a bulk index job and return its status.

        :param object translator: Translator
        :param str process_mode: Job mode
        :param callable should_stop: Return True to stop the job
        """
        if process_mode not in PROCESS_MODES:
            return {
                'error': translator.tr("error.unknown_process_mode"),
                'error_code': 400
            }

        job = IndexGeometriesJob(
            self.db, self.index, self.property_resolver, self.logger,
            should_stop
        )
        return {
            'process_mode': process_mode,
            'status': job.run(process_mode)
        }

    def storage_error(self, translator, e):
        self.logger.error(e)
        if ERROR_DETAILS_LOG_ONLY:
            error_details = 'see log for details'
        else:
            error_details = {'db_errors': [str(e)]}
        return {
            'error': translator.tr("error.database_error"),
            'error_details': error_details,
            'error_code': 500
        }

    def error_response(self, error, details):
        self.logger.error("%s: %s", error, details)
        if ERROR_DETAILS_LOG_ONLY:
            error_details = 'see log for details'
        else:
            error_details = details
        return {
            'error': error,
            'error_details': error_details,
            'error_code': 422
        }
