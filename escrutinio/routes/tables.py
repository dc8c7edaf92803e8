from flask import abort, current_app, jsonify, request
from flask_login import current_user, login_required

from escrutinio.extensions import db
from escrutinio.models import PollingTable
from escrutinio.services.tally import (
    ApplyError,
    ListeningSession,
    PersistenceError,
    TallyStore,
    tally_services,
)
from escrutinio.services.tally.session import LISTENING


def _payload():
    return request.get_json(silent=True) or request.form


def _election_id(data=None):
    data = data if data is not None else {}
    return (
        data.get("election")
        or request.args.get("election")
        or current_app.config["DEFAULT_ELECTION_ID"]
    )


def _operated_table(table_id):
    table = db.get_or_404(PollingTable, table_id)
    if not tally_services()["assignments"].can_operate(current_user, table.id):
        abort(403)
    return table


def _error(exc, status):
    return {"ok": False, "error": exc.message, "reason": exc.reason}, status


def register_table_routes(app):
    @app.route("/tables/<int:table_id>/tally")
    @login_required
    def table_tally(table_id):
        table = _operated_table(table_id)
        services = tally_services()
        election_id = _election_id()
        return jsonify(
            {
                "ok": True,
                "tally": services["repository"].snapshot(table.id, election_id),
                "validation": services["repository"].validation(table.id, election_id),
            }
        )

    @app.route("/tables/<int:table_id>/session")
    @login_required
    def session_status(table_id):
        table = _operated_table(table_id)
        session = tally_services()["sessions"].get(current_user.id, table.id)
        if session is None:
            return {"ok": True, "session": {"table_id": table.id, "state": "idle"}}
        return {"ok": True, "session": session.status()}

    @app.route("/tables/<int:table_id>/session/start", methods=["POST"])
    @login_required
    def start_session(table_id):
        table = _operated_table(table_id)
        data = _payload()
        services = tally_services()
        election_id = _election_id(data)

        def build():
            return ListeningSession(
                table_id=table.id,
                election_id=election_id,
                repository=services["repository"],
                roster_provider=services["roster"],
                parser=services["parser"],
                operator=current_user._get_current_object(),
                assignments=services["assignments"],
            )

        session = services["sessions"].get_or_create(current_user.id, table.id, build)
        if session.election_id != election_id:
            if session.state == LISTENING:
                return {
                    "ok": False,
                    "error": "Stop the current session before switching elections.",
                }, 409
            session = services["sessions"].replace(current_user.id, table.id, build())

        office = (data.get("office") or "").strip()
        if office and session.state != LISTENING:
            session.office = office

        try:
            status = session.start()
        except ApplyError as exc:
            return _error(exc, 409)
        return {"ok": True, "session": status}

    @app.route("/tables/<int:table_id>/session/stop", methods=["POST"])
    @login_required
    def stop_session(table_id):
        table = _operated_table(table_id)
        session = tally_services()["sessions"].get(current_user.id, table.id)
        if session is None:
            return {"ok": True, "session": {"table_id": table.id, "state": "idle"}}
        return {"ok": True, "session": session.stop()}

    @app.route("/tables/<int:table_id>/session/error", methods=["POST"])
    @login_required
    def session_error(table_id):
        table = _operated_table(table_id)
        data = _payload()
        session = tally_services()["sessions"].get(current_user.id, table.id)
        if session is None:
            return {"ok": False, "error": "No listening session for this table."}, 409
        status = session.fail(data.get("error") or "unknown")
        return {"ok": True, "session": status, "error": status["last_error"]}

    @app.route("/tables/<int:table_id>/transcripts", methods=["POST"])
    @login_required
    def submit_transcript(table_id):
        table = _operated_table(table_id)
        data = _payload()
        utterance = (data.get("utterance") or "").strip().lower()

        session = tally_services()["sessions"].get(current_user.id, table.id)
        if session is None or session.state != LISTENING:
            return {"ok": False, "error": "The session is not listening."}, 409

        result = session.handle_transcript(utterance)
        if result["ok"]:
            return result
        if result["reason"] == "persistence-failed":
            return result, 503
        return result, 400

    @app.route("/tables/<int:table_id>/undo", methods=["POST"])
    @login_required
    def undo_last(table_id):
        table = _operated_table(table_id)
        session = tally_services()["sessions"].get(current_user.id, table.id)
        if session is None:
            return _error(ApplyError("no-undo-available"), 409)

        result = session.undo()
        if result["ok"]:
            return result
        return result, 409

    @app.route("/tables/<int:table_id>/validate", methods=["POST"])
    @login_required
    def validate_table(table_id):
        table = _operated_table(table_id)
        data = _payload()
        services = tally_services()
        election_id = _election_id(data)

        sessions = services["sessions"].for_table(table.id)
        for session in sessions:
            session.stop()

        store = TallyStore(services["repository"], election_id)
        try:
            record = store.validate(table.id, current_user.username)
        except ApplyError as exc:
            return _error(exc, 409)
        except PersistenceError as exc:
            return _error(exc, 503)

        for session in sessions:
            session.store.undo.clear(table.id)
        return {"ok": True, "validation": record}, 201
