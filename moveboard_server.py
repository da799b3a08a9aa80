#!/usr/bin/env python3
"""
Moveboard Server
----------------
JSON API over the SQLite move store. This is the durable side the board
engine and triage workflow talk to through HttpMoveGateway.

Usage:
    python moveboard_server.py --port 5000 --db ~/.local/share/moveboard/moves.db

API:
    GET    /api/moves                   → [Move]   ?lane=&client_id=&include_completed=true
    POST   /api/moves                   → Move     { title, lane?, client_id?, ... }
    GET    /api/moves/<id>              → Move
    PATCH  /api/moves/<id>              → Move     { lane?, position?, title?, ... }
    POST   /api/moves/<id>/complete     → Move
    POST   /api/moves/<id>/promote      → Move
    POST   /api/moves/<id>/demote       → Move
    DELETE /api/moves/<id>              → 204
    POST   /api/moves/reorder           → [Move]   { lane, ordered_ids }
    GET    /api/clients                 → [Client]
    POST   /api/clients                 → Client   { name }
    GET|POST /api/triage                → TriageResult (side-effecting)
    GET    /health
"""

import logging
import os
import sys
from pathlib import Path

from flask import Flask, jsonify, request

from moveboard.config import Settings
from moveboard.errors import NotFound, ValidationError
from moveboard.pipeline import run_triage
from moveboard.schema import Lane
from moveboard.store import MoveStore

logger = logging.getLogger("moveboard.server")

app = Flask(__name__)
# Callable(open_moves, clients) -> [RewriteCandidate]; None = no suggestions
app.config.setdefault("REWRITE_SUGGESTER", None)


# ── Config ───────────────────────────────────────────────────────────────────

def get_db_path() -> Path:
    env = os.environ.get("MOVEBOARD_DB")
    if env:
        return Path(env)
    settings = Settings.load(os.environ.get("MOVEBOARD_CONFIG"))
    return Path(settings.resolved_db_path())


def get_store() -> MoveStore:
    return MoveStore(str(get_db_path()))


def _error(message: str, code: int, **extra):
    body = {"error": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), code


@app.errorhandler(ValidationError)
def handle_validation(e: ValidationError):
    return _error(str(e), 400, field=e.field)


@app.errorhandler(NotFound)
def handle_not_found(e: NotFound):
    return _error(str(e), 404)


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


# ── Moves ────────────────────────────────────────────────────────────────────

@app.route("/api/moves", methods=["GET"])
def api_moves():
    lane = request.args.get("lane")
    client_id = request.args.get("client_id", type=int)
    include_completed = request.args.get("include_completed") == "true"
    moves = get_store().list_moves(
        lane=Lane.from_str(lane) if lane else None,
        client_id=client_id,
        include_completed=include_completed,
    )
    return jsonify([m.to_dict() for m in moves])


@app.route("/api/moves", methods=["POST"])
def api_create_move():
    move = get_store().create_move(_body())
    return jsonify(move.to_dict()), 201


@app.route("/api/moves/<int:move_id>", methods=["GET"])
def api_get_move(move_id):
    return jsonify(get_store().get(move_id).to_dict())


@app.route("/api/moves/<int:move_id>", methods=["PATCH"])
def api_patch_move(move_id):
    move = get_store().patch_move(move_id, _body())
    return jsonify(move.to_dict())


@app.route("/api/moves/<int:move_id>/complete", methods=["POST"])
def api_complete_move(move_id):
    move = get_store().complete_move(move_id)
    logger.info(f"Move {move_id} completed: {move.title}")
    return jsonify(move.to_dict())


@app.route("/api/moves/<int:move_id>/promote", methods=["POST"])
def api_promote_move(move_id):
    return jsonify(get_store().promote_move(move_id).to_dict())


@app.route("/api/moves/<int:move_id>/demote", methods=["POST"])
def api_demote_move(move_id):
    return jsonify(get_store().demote_move(move_id).to_dict())


@app.route("/api/moves/<int:move_id>", methods=["DELETE"])
def api_delete_move(move_id):
    get_store().delete_move(move_id)
    return "", 204


@app.route("/api/moves/reorder", methods=["POST"])
def api_reorder_moves():
    data = _body()
    lane = data.get("lane")
    ordered_ids = data.get("ordered_ids")
    if not lane or not isinstance(ordered_ids, list):
        return _error("lane and ordered_ids are required", 400)
    moves = get_store().reorder(Lane.from_str(lane), ordered_ids)
    return jsonify([m.to_dict() for m in moves])


# ── Clients ──────────────────────────────────────────────────────────────────

@app.route("/api/clients", methods=["GET"])
def api_clients():
    include_archived = request.args.get("include_archived") == "true"
    clients = get_store().list_clients(include_archived=include_archived)
    return jsonify([c.to_dict() for c in clients])


@app.route("/api/clients", methods=["POST"])
def api_create_client():
    client = get_store().create_client(_body().get("name", ""))
    return jsonify(client.to_dict()), 201


# ── Triage ───────────────────────────────────────────────────────────────────

@app.route("/api/triage", methods=["GET", "POST"])
def api_triage():
    try:
        result = run_triage(get_store(), app.config.get("REWRITE_SUGGESTER"))
    except Exception as e:
        logger.exception("Triage run failed")
        return _error(f"Triage failed: {e}", 503)
    return jsonify(result.to_dict())


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": str(get_db_path())})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Moveboard Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=5000)
    parser.add_argument("--db", help="Path to moves.db (overrides MOVEBOARD_DB env var)")
    parser.add_argument("--config", help="Path to settings.yaml (overrides MOVEBOARD_CONFIG)")
    args = parser.parse_args()

    if args.db:
        os.environ["MOVEBOARD_DB"] = args.db
    if args.config:
        os.environ["MOVEBOARD_CONFIG"] = args.config

    settings = Settings.load(os.environ.get("MOVEBOARD_CONFIG"))
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [moveboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    db_path = get_db_path()
    print(f"""
╔═══════════════════════════════════════╗
║  Moveboard Server                     ║
╠═══════════════════════════════════════╣
║  URL:  http://{args.host}:{args.port:<20}║
║  DB:   {str(db_path):<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)
