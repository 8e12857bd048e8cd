"""Tool catalog and execution dashboard API routes."""

from flask import Blueprint, current_app, jsonify

dashboard_bp = Blueprint("dashboard", __name__)


@dashboard_bp.route("/tools", methods=["GET"])
def list_tools():
    """Return the JSON schema of every registered tool."""
    registry = current_app.config["tool_registry"]
    return jsonify({"tools": registry.schema()})


@dashboard_bp.route("/dashboard", methods=["GET"])
def get_dashboard():
    """Return execution counts, success rate and the latest tool runs."""
    store = current_app.config["session_store"]
    if store is None:
        return jsonify({
            "persisted": False,
            "stats": {
                "total_conversations": 0,
                "total_messages": 0,
                "total_tool_executions": 0,
                "success_rate": 0.0,
            },
            "recent_executions": [],
        })

    return jsonify({
        "persisted": True,
        "stats": store.dashboard_stats(),
        "recent_executions": store.recent_executions(limit=10),
    })
