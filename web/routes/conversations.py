"""Conversation history API routes."""

from flask import Blueprint, current_app, jsonify, request

conversations_bp = Blueprint("conversations", __name__)


@conversations_bp.route("/conversations", methods=["GET"])
def list_conversations():
    """List persisted conversations, most recently updated first."""
    store = current_app.config["session_store"]
    if store is None:
        return jsonify({"persisted": False, "conversations": []})

    limit = request.args.get("limit", type=int)
    return jsonify({
        "persisted": True,
        "conversations": store.list_conversations(limit=limit),
    })


@conversations_bp.route("/conversations/<conversation_id>", methods=["GET"])
def get_conversation(conversation_id):
    store = current_app.config["session_store"]
    conversation = store.get_conversation(conversation_id) if store else None
    if conversation is None:
        return jsonify({"error": "Conversation not found"}), 404
    return jsonify(conversation)
