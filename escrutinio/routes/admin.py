from flask import abort, current_app, jsonify, request
from flask_login import current_user, login_required

from escrutinio.extensions import db
from escrutinio.models import PollingTable
from escrutinio.services.tally import PersistenceError, tally_services


def _require_admin():
    if not current_user.is_admin:
        abort(403)


def register_admin_routes(app):
    @app.route("/admin/tables")
    @login_required
    def admin_tables():
        _require_admin()
        election_id = request.args.get("election") or current_app.config["DEFAULT_ELECTION_ID"]
        repository = tally_services()["repository"]

        rows = []
        for table in PollingTable.query.order_by(PollingTable.id).all():
            snapshot = repository.snapshot(table.id, election_id)
            rows.append(
                {
                    "id": table.id,
                    "code": table.code,
                    "local_id": table.local_id,
                    "comuna": table.comuna,
                    "region": table.region,
                    "validated": snapshot["validated"],
                    "counts": snapshot["counts"],
                    "updated_at": snapshot["updated_at"],
                }
            )
        return jsonify({"ok": True, "election_id": election_id, "tables": rows})

    @app.route("/admin/tables/<int:table_id>/counts", methods=["POST"])
    @login_required
    def correct_count(table_id):
        _require_admin()
        table = db.get_or_404(PollingTable, table_id)
        data = request.get_json(silent=True) or request.form
        election_id = data.get("election") or current_app.config["DEFAULT_ELECTION_ID"]
        office = (data.get("office") or "").strip()
        candidate_key = (data.get("candidate") or "").strip()

        if not office or not candidate_key:
            return {"ok": False, "error": "Office and candidate are required."}, 400

        try:
            votes = int(data.get("votes"))
        except (TypeError, ValueError):
            return {"ok": False, "error": "Votes must be a whole number."}, 400
        if votes < 0:
            return {"ok": False, "error": "Votes cannot be negative."}, 400

        repository = tally_services()["repository"]
        if repository.is_validated(table.id, election_id):
            return {
                "ok": False,
                "error": "This table has been validated and can no longer change.",
            }, 409

        try:
            repository.set_count(table.id, election_id, office, candidate_key, votes)
        except PersistenceError as exc:
            return {"ok": False, "error": exc.message}, 503

        current_app.logger.info(
            "%s corrected table %s %s/%s to %s",
            current_user.username,
            table.id,
            office,
            candidate_key,
            votes,
        )
        return {
            "ok": True,
            "tally": repository.snapshot(table.id, election_id),
        }
