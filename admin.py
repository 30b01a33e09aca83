"""
Matchday admin API — Flask JSON surface for group owners and players.

The caller is identified by the X-User-Id header (set by the fronting
identity proxy). Owner actions (score entry, finishing, forcing live,
adding/removing matches) require the caller to be the group's creator.

Rejected actions come back as {"error": ...} with 404 for unknown
matches/groups, 403 for authorization failures and 400 otherwise.
"""

import logging
from dataclasses import asdict
from datetime import datetime

from flask import Flask, request, jsonify, abort

import betting
import config
import groups
import models
import scheduler
from entities import NotFound, RejectedAction
from fixtures import APIFootballSource

logger = logging.getLogger("matchday.admin")

app = Flask(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@app.errorhandler(RejectedAction)
def handle_rejected(e):
    status = 404 if isinstance(e, NotFound) else 400
    return jsonify({"error": str(e)}), status


@app.errorhandler(403)
def handle_forbidden(e):
    return jsonify({"error": e.description}), 403


def _caller() -> str:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        abort(403, description="Missing X-User-Id header")
    return user_id


def _require_owner(group_id: int) -> str:
    user_id = _caller()
    with models.get_db() as conn:
        if not groups.is_creator(conn, group_id, user_id):
            abort(403, description="Only the group creator can do that")
    return user_id


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _match_id(body) -> int:
    try:
        return int(body["match_id"])
    except (TypeError, ValueError):
        raise RejectedAction("match_id must be an integer") from None


def _source():
    """Fixture source for odds and provider lookups; None when no API key is set."""
    source = app.config.get("FIXTURE_SOURCE")
    if source is None and config.API_FOOTBALL_KEY:
        source = APIFootballSource()
        app.config["FIXTURE_SOURCE"] = source
    return source


def _transition_json(t) -> dict:
    return {
        "match_id": t.match_id,
        "previous": t.previous.value,
        "status": t.current.value,
        "applied": t.applied,
    }


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

@app.route("/api/groups", methods=["POST"])
def create_group():
    user_id = _caller()
    body = _body()
    with models.get_db() as conn:
        group_id = groups.create_group(
            conn,
            name=body.get("name", ""),
            creator_id=user_id,
            bet_type=body.get("bet_type", "classic"),
            match_type=body.get("match_type", "manual"),
            starting_credits=body.get("starting_credits"),
            credits_goal=body.get("credits_goal"),
        )
    return jsonify({"group_id": group_id}), 201


@app.route("/api/groups/<int:group_id>/join", methods=["POST"])
def join_group(group_id):
    user_id = _caller()
    with models.get_db() as conn:
        joined = groups.join_group(conn, group_id, user_id)
    return jsonify({"joined": joined})


@app.route("/api/groups/<int:group_id>/standings")
def group_standings(group_id):
    with models.get_db() as conn:
        table = groups.standings(conn, group_id)
    return jsonify(table)


@app.route("/api/groups/<int:group_id>/members/<user_id>")
def member_record(group_id, user_id):
    with models.get_db() as conn:
        record = betting.member_record(conn, group_id, user_id)
    return jsonify(record)


# ---------------------------------------------------------------------------
# Matches in a group
# ---------------------------------------------------------------------------

@app.route("/api/groups/<int:group_id>/matches", methods=["POST"])
def add_match(group_id):
    """Add an existing match ({"match_id"}) or a provider fixture ({"external_id"})."""
    _require_owner(group_id)
    body = _body()
    source = _source()
    with models.get_db() as conn:
        if body.get("external_id"):
            if source is None:
                raise RejectedAction("Fixture source is not configured")
            match_id = groups.add_fixture_to_group(conn, source, body["external_id"], group_id)
        elif body.get("match_id") is not None:
            match_id = _match_id(body)
            groups.add_match_to_group(conn, source, match_id, group_id)
        else:
            raise RejectedAction("match_id or external_id is required")
    return jsonify({"match_id": match_id}), 201


@app.route("/api/groups/<int:group_id>/matches/manual", methods=["POST"])
def create_manual_match(group_id):
    _require_owner(group_id)
    body = _body()
    try:
        kickoff = datetime.fromisoformat(body["kickoff"])
    except (KeyError, TypeError, ValueError):
        raise RejectedAction("kickoff must be an ISO-8601 datetime") from None
    match_id = scheduler.manual_create_match(
        group_id=group_id,
        home_team=body.get("home_team", ""),
        away_team=body.get("away_team", ""),
        kickoff=kickoff,
        home_score=body.get("home_score"),
        away_score=body.get("away_score"),
    )
    return jsonify({"match_id": match_id}), 201


@app.route("/api/groups/<int:group_id>/matches/<int:match_id>", methods=["DELETE"])
def remove_match(group_id, match_id):
    _require_owner(group_id)
    with models.get_db() as conn:
        result = groups.remove_match_from_group(conn, match_id, group_id)
    return jsonify(result)


@app.route("/api/groups/<int:group_id>/matches/<int:match_id>/score", methods=["POST"])
def update_score(group_id, match_id):
    _require_owner(group_id)
    body = _body()
    transition = scheduler.manual_update_score(
        match_id, group_id, body.get("home_score"), body.get("away_score")
    )
    return jsonify(_transition_json(transition))


@app.route("/api/groups/<int:group_id>/matches/<int:match_id>/finish", methods=["POST"])
def mark_finished(group_id, match_id):
    _require_owner(group_id)
    body = _body()
    transition, report = scheduler.manual_mark_finished(
        match_id, group_id, body.get("home_score"), body.get("away_score")
    )
    return jsonify({**_transition_json(transition), "settlement": asdict(report)})


@app.route("/api/groups/<int:group_id>/matches/<int:match_id>/live", methods=["POST"])
def force_live(group_id, match_id):
    _require_owner(group_id)
    body = _body()
    transition = scheduler.manual_force_live(
        match_id, group_id, body.get("home_score", 0), body.get("away_score", 0)
    )
    return jsonify(_transition_json(transition))


# ---------------------------------------------------------------------------
# Bets and reminders
# ---------------------------------------------------------------------------

@app.route("/api/groups/<int:group_id>/bets", methods=["POST"])
def place_bet(group_id):
    user_id = _caller()
    body = _body()
    if body.get("match_id") is None:
        raise RejectedAction("match_id is required")
    with models.get_db() as conn:
        bet_id = betting.place_bet(
            conn,
            user_id=user_id,
            match_id=_match_id(body),
            group_id=group_id,
            outcome=body.get("outcome"),
            wager_amount=body.get("wager_amount"),
        )
        bet = models.get_bet_by_id(conn, bet_id)
    return jsonify(dict(bet)), 201


@app.route("/api/telegram/link", methods=["POST"])
def link_telegram():
    user_id = _caller()
    body = _body()
    if not body.get("chat_id"):
        raise RejectedAction("chat_id is required")
    try:
        minutes = int(body.get("reminder_minutes", config.REMINDER_MINUTES))
    except (TypeError, ValueError):
        raise RejectedAction("reminder_minutes must be an integer") from None
    with models.get_db() as conn:
        models.upsert_telegram_link(
            conn,
            user_id,
            str(body["chat_id"]),
            reminder_minutes=minutes,
            reminders_enabled=bool(body.get("reminders_enabled", True)),
        )
    return jsonify({"linked": True})


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

def start(host=None, port=None):
    """Start the Flask dev server."""
    models.init_db()
    app.run(host=host or config.ADMIN_HOST, port=port or config.ADMIN_PORT,
            debug=False, use_reloader=False)


if __name__ == "__main__":
    import sys
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    port = int(sys.argv[1]) if len(sys.argv) > 1 else config.ADMIN_PORT
    logger.info("Admin API starting on http://%s:%d", config.ADMIN_HOST, port)
    start(port=port)
