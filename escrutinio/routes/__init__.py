from escrutinio.routes.admin import register_admin_routes
from escrutinio.routes.auth import register_auth_routes
from escrutinio.routes.results import register_results_routes
from escrutinio.routes.tables import register_table_routes


def register_routes(app):
    register_auth_routes(app)
    register_table_routes(app)
    register_results_routes(app)
    register_admin_routes(app)
