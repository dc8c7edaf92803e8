from flask import current_app, jsonify, request

from escrutinio.services.tally import AggregationEngine, tables_in_scope, tally_services


def _scope_engine():
    """Build an aggregation engine for the filters in the query string.

    Returns ``(engine, error_response)``; exactly one of them is ``None``.
    """
    services = tally_services()
    election_id = request.args.get("election") or current_app.config["DEFAULT_ELECTION_ID"]
    office = (request.args.get("office") or "").strip() or None

    if office is None:
        offices = services["roster"].offices(election_id)
        if len(offices) != 1:
            return None, ({"ok": False, "error": "An office is required."}, 400)
        office = offices[0]

    table_ids = tables_in_scope(
        region=request.args.get("region"),
        comuna=request.args.get("comuna"),
        local_id=request.args.get("local"),
        table_ids=request.args.getlist("table", type=int),
    )

    engine = AggregationEngine(
        services["repository"],
        election_id,
        office,
        roster=services["roster"].roster(election_id, office),
    )
    engine.watch(table_ids)
    return engine, None


def register_results_routes(app):
    @app.route("/results")
    def results():
        engine, error = _scope_engine()
        if error:
            return error

        consolidated = engine.consolidated
        tables = len(engine.table_ids)
        engine.close()
        return jsonify(
            {
                "ok": True,
                "election_id": engine.election_id,
                "office": consolidated["office"],
                "tables": tables,
                "rows": consolidated["rows"],
                "total_votes": consolidated["total_votes"],
            }
        )

    @app.route("/results/breakdown")
    def results_breakdown():
        level = (request.args.get("level") or "comuna").strip()
        engine, error = _scope_engine()
        if error:
            return error

        try:
            groups = engine.breakdown(level)
        except ValueError as exc:
            return {"ok": False, "error": str(exc)}, 400
        finally:
            engine.close()

        return jsonify(
            {
                "ok": True,
                "election_id": engine.election_id,
                "office": engine.office,
                "level": level,
                "groups": groups,
            }
        )
