"""OrchestrationLoop: the bounded generate -> act -> observe cycle."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from agent.config import AgentConfig
from agent.context import ConversationContext, Turn
from agent.exceptions import IterationBoundExceeded, ModelStreamError
from agent.protocol import LoopEvent
from agent.stream_accumulator import StreamAccumulator

logger = logging.getLogger(__name__)


class LoopState(str, enum.Enum):
    STREAMING = "streaming"
    DISPATCHING = "dispatching"
    DONE = "done"
    FAILED = "failed"


class OrchestrationLoop:
    """
    Drives one inbound user message to completion.

    Each iteration opens a model stream (with bounded retries), relays text
    fragments as they arrive, and when the model asked for tools, runs them
    one at a time in index order, appending each result to the context
    before the next one starts. The loop ends in DONE when a stream carries
    no tool calls, or in FAILED when the model stream cannot be opened, the
    iteration bound is hit, or something unexpected breaks.

    ``client`` must provide ``open_stream(messages, model, tools)`` returning
    an async-iterable of delta dicts with an ``aclose()`` coroutine.
    """

    def __init__(
        self,
        client,
        executor,
        registry,
        config: AgentConfig,
        context: ConversationContext | None = None,
        store=None,
        conversation_id: str | None = None,
        model: str | None = None,
        telemetry=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.executor = executor
        self.registry = registry
        self.config = config
        if context is None:
            context = ConversationContext(system_prompt=config.system_prompt)
        self.context = context
        self.store = store
        self.conversation_id = conversation_id
        self.model = model or config.chat_model.model_name
        self.telemetry = telemetry
        self._sleep = sleep
        self.state = LoopState.STREAMING
        self.iterations = 0
        self.final_text = ""

    async def run(self, user_message: str) -> AsyncIterator[LoopEvent]:
        """Process one user message, yielding events until DONE or FAILED."""
        self.state = LoopState.STREAMING
        try:
            self._append(Turn.user(user_message))
            async for event in self._iterate():
                yield event
        except (ModelStreamError, IterationBoundExceeded) as e:
            self.state = LoopState.FAILED
            logger.warning("Loop failed after %d iteration(s): %s", self.iterations, e)
            yield LoopEvent.error(f"{e.error_type}: {e}")
        except Exception as e:
            self.state = LoopState.FAILED
            logger.exception("Unexpected error in orchestration loop")
            yield LoopEvent.error(f"Internal error: {e}")
        finally:
            if self.telemetry is not None:
                self.telemetry.finalize(self.state.value)

    async def _iterate(self) -> AsyncIterator[LoopEvent]:
        tool_schemas = self.registry.schema()
        max_iterations = self.config.max_iterations

        while self.iterations < max_iterations:
            self.iterations += 1
            iteration_start = time.monotonic()
            self.state = LoopState.STREAMING

            accumulator = StreamAccumulator()
            async for event in self._stream(accumulator, tool_schemas):
                yield event
            turn = accumulator.finalize()

            if not turn.tool_calls:
                self.final_text = turn.text
                self._append(Turn.assistant(turn.text))
                self.state = LoopState.DONE
                self._record_iteration("done", iteration_start)
                return

            self.state = LoopState.DISPATCHING
            message_id = self._append(Turn.assistant(turn.text, turn.tool_calls))
            for call in turn.tool_calls:
                yield LoopEvent.tool_start(call.name, call.arguments)
                outcome = await self.executor.execute(call.name, call.arguments, message_id=message_id)
                self._append(Turn.tool(call.id, call.name, outcome.to_content()))
                if self.telemetry is not None:
                    self.telemetry.record_tool_call(
                        call.name, outcome.status, outcome.duration_ms, outcome.error_type
                    )
                yield LoopEvent.tool_end(call.name, outcome.result_payload())

            self._record_iteration(
                "tools:" + ",".join(c.name for c in turn.tool_calls), iteration_start
            )

        raise IterationBoundExceeded(
            f"Stopped after {max_iterations} tool-calling iteration(s) without a final answer"
        )

    async def _stream(self, accumulator: StreamAccumulator, tool_schemas: list[dict]) -> AsyncIterator[LoopEvent]:
        start = time.monotonic()
        stream, attempts = await self._open_stream(tool_schemas)
        error = None
        try:
            async for delta in stream:
                fragment = accumulator.feed(delta)
                if fragment:
                    yield LoopEvent.text(fragment)
        except ModelStreamError as e:
            error = str(e)
            raise
        finally:
            await stream.aclose()
            if self.telemetry is not None:
                self.telemetry.record_llm_call(
                    model=self.model,
                    attempts=attempts,
                    latency_ms=(time.monotonic() - start) * 1000,
                    tool_calls=accumulator.tool_call_count,
                    error=error,
                )

    async def _open_stream(self, tool_schemas: list[dict]):
        """Open the model stream, retrying with a fixed delay up to max_retries attempts."""
        max_attempts = self.config.provider.max_retries
        delay = self.config.provider.retry_delay
        messages = self.context.to_messages()
        last_error: ModelStreamError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                stream = await self.client.open_stream(messages, self.model, tool_schemas)
                return stream, attempt
            except ModelStreamError as e:
                last_error = e
                logger.warning(
                    "Model stream open failed (attempt %d/%d): %s", attempt, max_attempts, e
                )
                if attempt < max_attempts:
                    await self._sleep(delay)

        raise ModelStreamError(f"Giving up after {max_attempts} attempt(s): {last_error}")

    def _append(self, turn: Turn) -> str | None:
        """Append to the context and, when persisting, to the store."""
        self.context.append(turn)
        if self.store is None or self.conversation_id is None:
            return None
        return self.store.append_message(
            self.conversation_id, turn.role, turn.content, turn.tool_payload
        )

    def _record_iteration(self, decision: str, start: float) -> None:
        if self.telemetry is not None:
            self.telemetry.record_iteration(
                self.iterations, decision, (time.monotonic() - start) * 1000
            )
