"""Flask application factory for the tool agent sandbox."""

import asyncio
import logging
import queue
import threading

from flask import Flask
from flask_cors import CORS

from agent.config import AgentConfig
from agent.context import ConversationContext
from agent.loop import OrchestrationLoop
from agent.models import ChatCompletionsClient
from agent.protocol import LoopEvent, ProtocolEncoder
from agent.session_store import SessionStore
from agent.telemetry import Telemetry
from tools.executor import ToolExecutor
from tools.tool_registry import ToolRegistry, create_default_registry

logger = logging.getLogger(__name__)


def create_app(
    config: AgentConfig,
    client=None,
    registry: ToolRegistry | None = None,
    store: SessionStore | None = None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    CORS(app, expose_headers=["X-Conversation-Id"])

    if registry is None:
        registry = create_default_registry(config.tool_execution)
    if client is None:
        client = ChatCompletionsClient.from_config(config)
    if store is None and config.session.persist:
        store = SessionStore(config.session.storage_path)

    # Shared state; the registry is read-only after this point
    app.config["agent_config"] = config
    app.config["tool_registry"] = registry
    app.config["model_client"] = client
    app.config["session_store"] = store
    app.config["tool_executor"] = ToolExecutor(registry, config.tool_execution, store=store)

    # Register blueprints
    from web.routes.chat import chat_bp
    from web.routes.conversations import conversations_bp
    from web.routes.dashboard import dashboard_bp

    app.register_blueprint(chat_bp, url_prefix="/api")
    app.register_blueprint(conversations_bp, url_prefix="/api")
    app.register_blueprint(dashboard_bp, url_prefix="/api")

    return app


_END = object()


class ChatRun:
    """
    One /api/chat request.

    The orchestration loop runs on a fresh event loop in a daemon thread and
    pushes encoded frames onto ``frames``; the HTTP response drains it with
    ``iter_frames()`` until the end marker arrives.
    """

    def __init__(
        self,
        app_config,
        context: ConversationContext,
        user_message: str,
        conversation_id: str,
        model: str | None = None,
    ):
        config: AgentConfig = app_config["agent_config"]
        self.user_message = user_message
        self.conversation_id = conversation_id
        self.encoder = ProtocolEncoder()
        self.frames: queue.Queue = queue.Queue()
        self.telemetry = Telemetry(config.telemetry, conversation_id)
        self.loop = OrchestrationLoop(
            client=app_config["model_client"],
            executor=app_config["tool_executor"],
            registry=app_config["tool_registry"],
            config=config,
            context=context,
            store=app_config["session_store"],
            conversation_id=conversation_id if app_config["session_store"] else None,
            model=model,
            telemetry=self.telemetry,
        )
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run_in_thread, daemon=True)
        self._thread.start()

    def iter_frames(self):
        while True:
            frame = self.frames.get()
            if frame is _END:
                return
            yield frame

    def _run_in_thread(self) -> None:
        try:
            asyncio.run(self._drive())
        except Exception as e:
            logger.exception("Chat run for %s crashed", self.conversation_id)
            self.frames.put(self.encoder.encode(LoopEvent.error(f"Internal error: {e}")))
        finally:
            self.frames.put(_END)

    async def _drive(self) -> None:
        async for event in self.loop.run(self.user_message):
            self.frames.put(self.encoder.encode(event))
