from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from escrutinio.models import User
from escrutinio.services.tally import tally_services


def register_auth_routes(app):
    @app.route("/login", methods=["POST"])
    def login():
        data = request.get_json(silent=True) or request.form
        username = (data.get("username") or "").strip()
        password = data.get("password") or ""
        remember = bool(data.get("remember"))

        user = User.query.filter_by(username=username).first()
        if not user or not check_password_hash(user.password_hash, password):
            current_app.logger.warning("Failed login for %s", username)
            return {"ok": False, "error": "Invalid username or password."}, 401

        login_user(user, remember=remember)
        tables = tally_services()["assignments"].table_ids_for(user)
        return {
            "ok": True,
            "user": {"id": user.id, "username": user.username, "role": user.role},
            "tables": sorted(tables),
        }

    @app.route("/me")
    @login_required
    def me():
        tables = tally_services()["assignments"].table_ids_for(current_user)
        return jsonify(
            {
                "ok": True,
                "user": {
                    "id": current_user.id,
                    "username": current_user.username,
                    "role": current_user.role,
                },
                "tables": sorted(tables),
            }
        )

    @app.route("/logout")
    @login_required
    def logout():
        logout_user()
        return {"ok": True}
