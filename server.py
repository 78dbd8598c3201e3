import json

from flask import Flask, Request as RequestBase, request, jsonify
from flask_restx import Api, Resource, fields, reqparse
from werkzeug.exceptions import BadRequest

from qwc_services_core.api import create_model, CaseInsensitiveArgument
from qwc_services_core.auth import auth_manager, optional_auth
from qwc_services_core.runtime_config import RuntimeConfig
from qwc_services_core.tenant_handler import TenantHandler
from qwc_services_core.translator import Translator
from geometry_service import GeometryService


class Request(RequestBase):
    """Custom Flask Request subclass"""
    def on_json_loading_failed(self, e):
        """Always return detailed JSON decode error, not only in debug mode"""
        raise BadRequest('Failed to decode JSON object: {0}'.format(e))


# Flask application
app = Flask(__name__)
# use custom Request subclass
app.request_class = Request
# Flask-RESTPlus Api
api = Api(app, version='1.0', title='Geometry index service API',
          description="""API for the geometry index service.

## Geo queries

Resources are searched by their geometric values with a JSON geo query,
a single filter or a list of filters that are all applied:

    {"property": "<prefix:localName or id>", "mode": "geometry|geography",
     "around": {...}, "box": [...], "mapbox": [...], "zone": "<wkt>",
     "area": "<wkt>"}

Only the first valid predicate of a filter is used, in the order
`around`, `box`, `mapbox`, `zone`, `area`. Invalid filters are ignored.

* `around`: `{"x", "y", "radius"}` on a flat plane, or
  `{"latitude", "longitude", "radius", "unit": "km|m"}` on the earth
* `box`: `[left, top, right, bottom]` on a flat plane
* `mapbox`: `[top latitude, left longitude, bottom latitude, right longitude]`
* `zone`, `area`: polygon as WKT, on a flat plane or on the earth

### Examples

* `{"around": {"latitude": 48.85, "longitude": 2.29, "radius": 1, "unit": "km"}}`
* `[{"property": "dcterms:spatial", "box": [0, 0, 100, 100]}, {"zone": "POLYGON ((0 0, 50 0, 50 50, 0 50, 0 0))"}]`
          """,
          default_label='Geometry index operations', doc='/api/'
          )
# Omit X-Fields header in docs
app.config['RESTPLUS_MASK_SWAGGER'] = False
# disable verbose 404 error message
app.config['ERROR_404_HELP'] = False

auth = auth_manager(app, api)

# create tenant handler
tenant_handler = TenantHandler(app.logger)


def geometry_service_handler():
    """Get or create a GeometryService instance for a tenant."""
    tenant = tenant_handler.tenant()
    handler = tenant_handler.handler('geometry', 'geometry', tenant)
    if handler is None:
        config_handler = RuntimeConfig("geometry", app.logger)
        config = config_handler.tenant_config(tenant)
        handler = tenant_handler.register_handler(
            'geometry', tenant, GeometryService(tenant, app.logger, config))
    return handler


def abort_with_result(result):
    """Abort request with error of a service result."""
    error_code = result.get('error_code') or 404
    error_details = result.get('error_details') or {}
    if not isinstance(error_details, dict):
        error_details = {'details': error_details}
    api.abort(error_code, result['error'], **error_details)


# Api models
geo_query = fields.Raw(
    description='Geo filter or list of geo filters',
    example={'around': {
        'latitude': 48.85, 'longitude': 2.29, 'radius': 1, 'unit': 'km'
    }}
)

search_response = create_model(api, 'Search result', [
    ['resources', fields.List(fields.Integer, required=True,
                              description='Resource IDs', example=[1, 2])],
    ['geo', fields.Raw(required=False, allow_null=True,
                       description='Normalized geo filters')]
])

normalize_request = create_model(api, 'Search query', [
    ['geo', geo_query]
])

value_request = create_model(api, 'Value', [
    ['property', fields.Raw(required=True,
                            description='Property ID or term',
                            example='dcterms:spatial')],
    ['type', fields.String(required=True, description='Data type',
                           example='geometry:geography')],
    ['value', fields.Raw(required=True, description='Literal',
                         example='SRID=4326;POINT (2.29 48.85)')]
])

values_request = create_model(api, 'Resource values', [
    ['values', fields.List(fields.Nested(value_request), required=True,
                           description='All values of the resource')]
])

index_summary = create_model(api, 'Index summary', [
    ['updated', fields.Integer(description='Updated index rows')],
    ['inserted', fields.Integer(description='Inserted index rows')],
    ['deleted', fields.Integer(description='Deleted index rows')]
])

save_response = create_model(api, 'Index result', [
    ['resource_id', fields.Integer(required=True, description='Resource ID')],
    ['summary', fields.Nested(index_summary, required=True)]
])

validation_response = create_model(api, 'Validation message', [
    ['message', fields.String(required=True, description='Error message')],
    ['validation_errors', fields.List(
        fields.String, required=False, description='Value validation errors',
        example=["values[0]: Invalid geometry (Invalid WKT: ...)"]
    )]
])

job_request = create_model(api, 'Index job', [
    ['process_mode', fields.String(required=True, description='Process mode',
                                   example='resources reindex')]
])

job_response = create_model(api, 'Index job status', [
    ['process_mode', fields.String(required=True, description='Process mode')],
    ['status', fields.String(
        required=True,
        description='completed, aborted, stopped or error'
    )]
])


# request parser
search_parser = reqparse.RequestParser(argument_class=CaseInsensitiveArgument)
search_parser.add_argument('geo', required=True)


# routes
@api.route('/resources/')
@api.response(400, 'Bad request')
class ResourceCollection(Resource):
    @api.doc('search')
    @api.param('geo', 'JSON serialized geo filter or list of geo filters')
    @api.expect(search_parser)
    @api.marshal_with(search_response)
    @optional_auth
    def get(self):
        """Search resources by geometries

        Return IDs of resources with geometric values matching all geo filters.
        """
        translator = Translator(app, request)
        args = search_parser.parse_args()
        try:
            geo = json.loads(args['geo'])
        except ValueError:
            api.abort(400, translator.tr("error.invalid_geo_query"))

        geometry_service = geometry_service_handler()
        result = geometry_service.search(translator, {'geo': geo})
        if 'error' not in result:
            return result
        else:
            abort_with_result(result)


@api.route('/normalize')
@api.response(400, 'Bad request')
class NormalizeQuery(Resource):
    @api.doc('normalize')
    @api.expect(normalize_request)
    @optional_auth
    def post(self):
        """Normalize geo filters

        Return the geo filters as they are used to search, without the
        invalid ones.
        """
        translator = Translator(app, request)
        if request.is_json:
            # parse request data (NOTE: catches invalid JSON)
            query = api.payload
            if isinstance(query, dict):
                geometry_service = geometry_service_handler()
                result = geometry_service.normalize(translator, query)
                if 'error' not in result:
                    return result['query']
                else:
                    abort_with_result(result)
            else:
                api.abort(400, translator.tr("error.json_is_not_an_object"))
        else:
            api.abort(400, translator.tr("error.request_data_is_not_json"))


@api.route('/resources/<int:id>/geometries')
@api.response(400, 'Bad request')
@api.param('id', 'Resource ID')
class ResourceGeometries(Resource):
    @api.doc('index_resource')
    @api.response(422, 'Geometry validation failed', validation_response)
    @api.expect(values_request)
    @api.marshal_with(save_response)
    @optional_auth
    def put(self, id):
        """Index geometries of a resource

        Update the geometry and geography index rows of a saved resource from
        all its values. Existing rows are reused.
        """
        translator = Translator(app, request)
        if request.is_json:
            # parse request data (NOTE: catches invalid JSON)
            payload = api.payload
            if isinstance(payload, dict) and isinstance(
                payload.get('values'), list
            ):
                geometry_service = geometry_service_handler()
                result = geometry_service.save_resource(
                    translator, id, payload['values']
                )
                if 'error' not in result:
                    return result
                else:
                    abort_with_result(result)
            else:
                api.abort(400, translator.tr("error.values_are_not_a_list"))
        else:
            api.abort(400, translator.tr("error.request_data_is_not_json"))


@api.route('/jobs/index_geometries')
@api.response(400, 'Bad request')
class IndexGeometries(Resource):
    @api.doc('index_geometries')
    @api.expect(job_request)
    @api.marshal_with(job_response)
    @optional_auth
    def post(self):
        """Run a bulk index job

        Process modes: `resources reindex`, `resources geometry`,
        `resources geography`, `annotations reindex`, `annotations geometry`,
        `annotations geography`, `cartography`, `check`, `fix linestring`,
        `truncate`.
        """
        translator = Translator(app, request)
        if request.is_json:
            # parse request data (NOTE: catches invalid JSON)
            payload = api.payload
            if isinstance(payload, dict):
                geometry_service = geometry_service_handler()
                result = geometry_service.index_geometries(
                    translator, payload.get('process_mode')
                )
                if 'error' not in result:
                    return result
                else:
                    abort_with_result(result)
            else:
                api.abort(400, translator.tr("error.json_is_not_an_object"))
        else:
            api.abort(400, translator.tr("error.request_data_is_not_json"))


""" readyness endpoint """
@app.route("/ready", methods=['GET'])
def ready():
    return jsonify({"status": "OK"})


""" liveness endpoint """
@app.route("/healthz", methods=['GET'])
def healthz():
    return jsonify({"status": "OK"})


# local webserver
if __name__ == '__main__':
    print("Starting Geometry index service...")
    app.run(host='localhost', port=5013, debug=True)
