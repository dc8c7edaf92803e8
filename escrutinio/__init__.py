from flask import Flask

from escrutinio.config import Config
from escrutinio.extensions import db, login_manager, migrate
from escrutinio.models import User
from escrutinio.routes import register_routes
from escrutinio.services.tally import init_tally


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    init_tally(app)
    register_routes(app)
    return app


__all__ = ["db", "migrate", "create_app"]
