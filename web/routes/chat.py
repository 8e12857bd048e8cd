"""Chat API route: run one user message through the agent, streamed as NDJSON."""

import uuid

from flask import Blueprint, Response, current_app, jsonify, request

from agent.context import ConversationContext
from agent.protocol import CONTENT_TYPE
from web.app import ChatRun

chat_bp = Blueprint("chat", __name__)

_ROLES = ("system", "user", "assistant")


@chat_bp.route("/chat", methods=["POST"])
def chat():
    """Stream loop frames for the last user message in ``messages``."""
    data = request.get_json(silent=True) or {}
    messages = data.get("messages")
    error = _validate_messages(messages)
    if error:
        return jsonify({"error": error}), 400

    model = data.get("model")
    if model is not None and (not isinstance(model, str) or not model.strip()):
        return jsonify({"error": "model must be a non-empty string"}), 400

    config = current_app.config["agent_config"]
    store = current_app.config["session_store"]
    user_message = messages[-1]["content"]
    conversation_id = data.get("conversation_id")

    if store is not None:
        if conversation_id:
            if store.get_conversation(conversation_id) is None:
                return jsonify({"error": "Conversation not found"}), 404
        else:
            conversation_id = store.create_conversation(user_message)
    elif not conversation_id:
        conversation_id = uuid.uuid4().hex[:12]

    context = ConversationContext.from_messages(messages[:-1], config.system_prompt)
    run = ChatRun(current_app.config, context, user_message, conversation_id, model=model)
    run.start()

    return Response(
        run.iter_frames(),
        mimetype=CONTENT_TYPE,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Conversation-Id": conversation_id,
        },
    )


def _validate_messages(messages) -> str | None:
    if not isinstance(messages, list) or not messages:
        return "messages must be a non-empty list"
    for i, message in enumerate(messages):
        if not isinstance(message, dict):
            return f"messages[{i}] must be an object"
        if message.get("role") not in _ROLES:
            return f"messages[{i}].role must be one of: {', '.join(_ROLES)}"
        if not isinstance(message.get("content"), str):
            return f"messages[{i}].content must be a string"
    last = messages[-1]
    if last["role"] != "user" or not last["content"].strip():
        return "The last message must be a non-empty user message"
    return None
