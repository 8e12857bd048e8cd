import json
import tempfile
import unittest
from pathlib import Path

from agent.config import AgentConfig, ProviderSettings, TelemetryConfig, ToolExecutionConfig
from agent.context import ConversationContext
from agent.exceptions import ModelStreamError
from agent.loop import LoopState, OrchestrationLoop
from agent.session_store import SessionStore
from agent.telemetry import Telemetry
from tools.executor import ToolExecutor
from tools.tool_registry import ToolRegistry, create_default_registry

from fakes import EchoTool, FakeModelClient, FakeStream, text_deltas, tool_call_deltas


class TestOrchestrationLoop(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.workspace = root / "workspace"
        self.workspace.mkdir()
        self.config = AgentConfig(
            provider=ProviderSettings(max_retries=3, retry_delay=1.0),
            tool_execution=ToolExecutionConfig(
                workspace_dir=str(self.workspace),
                scratch_dir=str(root),
            ),
            telemetry=TelemetryConfig(enabled=True, log_dir=str(root / "metrics")),
            system_prompt="be brief",
        )
        self.registry = ToolRegistry()
        self.registry.register(EchoTool(self.config.tool_execution))
        EchoTool.calls = []
        self.sleeps: list[float] = []

    def tearDown(self):
        self._tmp.cleanup()

    async def _fake_sleep(self, seconds):
        self.sleeps.append(seconds)

    def _loop(self, client, registry=None, **kwargs) -> OrchestrationLoop:
        registry = registry or self.registry
        executor = ToolExecutor(registry, self.config.tool_execution, store=kwargs.get("store"))
        return OrchestrationLoop(
            client=client,
            executor=executor,
            registry=registry,
            config=self.config,
            sleep=self._fake_sleep,
            **kwargs,
        )

    async def _collect(self, loop, message):
        return [event async for event in loop.run(message)]

    async def test_plain_answer(self):
        client = FakeModelClient([text_deltas("Hello there")])
        loop = self._loop(client)

        events = await self._collect(loop, "hi")

        self.assertEqual({e.type for e in events}, {"text"})
        self.assertEqual("".join(e.content for e in events), "Hello there")
        self.assertEqual(loop.state, LoopState.DONE)
        self.assertEqual(loop.final_text, "Hello there")
        self.assertEqual([t.role for t in loop.context.turns], ["user", "assistant"])
        self.assertTrue(client.streams[0].closed)

    async def test_request_carries_system_prompt_and_tools(self):
        client = FakeModelClient([text_deltas("ok")])
        loop = self._loop(client, model="qwen2.5")

        await self._collect(loop, "hi")

        request = client.requests[0]
        self.assertEqual(request["model"], "qwen2.5")
        self.assertEqual(request["messages"][0], {"role": "system", "content": "be brief"})
        self.assertEqual(request["messages"][1], {"role": "user", "content": "hi"})
        self.assertEqual([t["name"] for t in request["tools"]], ["echo"])

    async def test_list_files_scenario(self):
        (self.workspace / "a.txt").write_text("x")
        registry = create_default_registry(self.config.tool_execution)
        client = FakeModelClient([
            text_deltas("Let me look.") + tool_call_deltas("execute_shell", {"command": "ls"}, call_id="call_ls"),
            text_deltas("There is one file: a.txt"),
        ])
        loop = self._loop(client, registry=registry)

        events = await self._collect(loop, "list files")

        types = [e.type for e in events]
        first_tool = types.index("tool_start")
        self.assertEqual(set(types[:first_tool]), {"text"})
        self.assertEqual(types.count("tool_start"), 1)
        self.assertEqual(types.count("tool_end"), 1)
        self.assertEqual(types[first_tool + 1], "tool_end")
        self.assertEqual(set(types[first_tool + 2:]), {"text"})
        self.assertEqual(loop.state, LoopState.DONE)

        start, end = events[first_tool], events[first_tool + 1]
        self.assertEqual(start.tool, "execute_shell")
        self.assertEqual(json.loads(start.input), {"command": "ls"})
        self.assertIn("a.txt", end.output["stdout"])

        roles = [t.role for t in loop.context.turns]
        self.assertEqual(roles, ["user", "assistant", "tool", "assistant"])
        tool_turn = loop.context.turns[2]
        self.assertEqual(tool_turn.tool_call_id, "call_ls")

        second_request = client.requests[1]["messages"]
        self.assertEqual(second_request[2]["tool_calls"][0]["id"], "call_ls")
        self.assertEqual(second_request[3]["role"], "tool")
        self.assertEqual(second_request[3]["tool_call_id"], "call_ls")

    async def test_tools_dispatch_sequentially_in_index_order(self):
        deltas = (
            tool_call_deltas("echo", {"text": "second"}, index=1, call_id="b")
            + tool_call_deltas("echo", {"text": "first"}, index=0, call_id="a")
        )
        client = FakeModelClient([deltas, text_deltas("done")])
        loop = self._loop(client)

        events = await self._collect(loop, "go")

        self.assertEqual(EchoTool.calls, ["first", "second"])
        tool_events = [(e.type, e.output) for e in events if e.type.startswith("tool")]
        self.assertEqual(tool_events, [
            ("tool_start", None), ("tool_end", "first"),
            ("tool_start", None), ("tool_end", "second"),
        ])
        tool_turns = [t for t in loop.context.turns if t.role == "tool"]
        self.assertEqual([t.tool_call_id for t in tool_turns], ["a", "b"])

    async def test_iteration_bound(self):
        scripts = [tool_call_deltas("echo", {"text": str(i)}) for i in range(6)]
        client = FakeModelClient(scripts)
        loop = self._loop(client)

        events = await self._collect(loop, "loop forever")

        self.assertEqual(len(client.requests), 5)
        self.assertEqual(len(client.scripts), 1)
        self.assertEqual(sum(1 for e in events if e.type == "tool_end"), 5)
        self.assertEqual(events[-1].type, "error")
        self.assertTrue(events[-1].content.startswith("IterationBoundExceeded"))
        self.assertEqual(loop.state, LoopState.FAILED)

    async def test_malformed_arguments_continue_the_loop(self):
        client = FakeModelClient([
            tool_call_deltas("echo", '{"text": "unterminated'),
            text_deltas("Sorry about that."),
        ])
        loop = self._loop(client)

        events = await self._collect(loop, "echo something")

        tool_end = next(e for e in events if e.type == "tool_end")
        self.assertEqual(tool_end.output["error_type"], "ArgumentParseFailure")
        self.assertEqual(loop.state, LoopState.DONE)
        tool_turn = next(t for t in loop.context.turns if t.role == "tool")
        self.assertIn("ArgumentParseFailure", tool_turn.content)
        self.assertEqual(EchoTool.calls, [])

    async def test_unknown_tool_is_reported_to_the_model(self):
        client = FakeModelClient([
            tool_call_deltas("teleport", {}),
            text_deltas("I cannot do that."),
        ])
        loop = self._loop(client)

        events = await self._collect(loop, "beam me up")

        tool_end = next(e for e in events if e.type == "tool_end")
        self.assertEqual(tool_end.output["error_type"], "ToolNotFound")
        self.assertEqual(loop.state, LoopState.DONE)

    async def test_stream_open_retries_then_succeeds(self):
        client = FakeModelClient([
            ModelStreamError("connection refused"),
            ModelStreamError("connection refused"),
            text_deltas("finally"),
        ])
        loop = self._loop(client)

        events = await self._collect(loop, "hi")

        self.assertEqual(self.sleeps, [1.0, 1.0])
        self.assertEqual("".join(e.content for e in events), "finally")
        self.assertEqual(loop.state, LoopState.DONE)

    async def test_stream_open_gives_up(self):
        client = FakeModelClient([ModelStreamError("down")] * 3 + [text_deltas("never")])
        loop = self._loop(client)

        events = await self._collect(loop, "hi")

        self.assertEqual(len(client.requests), 3)
        self.assertEqual(self.sleeps, [1.0, 1.0])
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].type, "error")
        self.assertTrue(events[0].content.startswith("ModelStreamFailure"))
        self.assertEqual(loop.state, LoopState.FAILED)

    async def test_mid_stream_failure_is_terminal(self):
        broken = FakeStream(text_deltas("partial"), error=ModelStreamError("reset by peer"))
        client = FakeModelClient([broken, text_deltas("unused")])
        loop = self._loop(client)

        events = await self._collect(loop, "hi")

        self.assertEqual(len(client.requests), 1)
        self.assertTrue(broken.closed)
        self.assertEqual(events[-1].type, "error")
        self.assertIn("reset by peer", events[-1].content)
        self.assertEqual(loop.state, LoopState.FAILED)

    async def test_unexpected_error_is_reported(self):
        class ExplodingClient:
            async def open_stream(self, messages, model, tools=None):
                raise KeyError("kaboom")

        loop = self._loop(ExplodingClient())

        with self.assertLogs("agent.loop", level="ERROR"):
            events = await self._collect(loop, "hi")

        self.assertEqual(events[-1].type, "error")
        self.assertTrue(events[-1].content.startswith("Internal error"))
        self.assertEqual(loop.state, LoopState.FAILED)

    async def test_seeded_context_is_sent(self):
        context = ConversationContext.from_messages(
            [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}],
            system_prompt="be brief",
        )
        client = FakeModelClient([text_deltas("ok")])
        loop = self._loop(client, context=context)

        await self._collect(loop, "now")

        roles = [m["role"] for m in client.requests[0]["messages"]]
        self.assertEqual(roles, ["system", "user", "assistant", "user"])

    async def test_turns_and_records_are_persisted(self):
        store = SessionStore(str(Path(self._tmp.name) / "db.sqlite"))
        conversation_id = store.create_conversation("echo please")
        client = FakeModelClient([
            tool_call_deltas("echo", {"text": "hi"}, call_id="call_e"),
            text_deltas("Echoed."),
        ])
        loop = self._loop(client, store=store, conversation_id=conversation_id)

        await self._collect(loop, "echo please")

        messages = store.get_conversation(conversation_id)["messages"]
        self.assertEqual([m["role"] for m in messages], ["user", "assistant", "tool", "assistant"])
        self.assertEqual(messages[1]["tool_payload"]["tool_calls"][0]["id"], "call_e")
        self.assertEqual(messages[2]["tool_payload"], {"tool_call_id": "call_e", "name": "echo"})
        executions = messages[1]["tool_executions"]
        self.assertEqual(len(executions), 1)
        self.assertEqual(executions[0]["status"], "success")
        self.assertEqual(messages[3]["content"], "Echoed.")

    async def test_telemetry_is_recorded(self):
        telemetry = Telemetry(self.config.telemetry, "conv1")
        client = FakeModelClient([
            tool_call_deltas("echo", {"text": "hi"}),
            text_deltas("done"),
        ])
        loop = self._loop(client, telemetry=telemetry)

        await self._collect(loop, "hi")

        summary = telemetry.summary()
        self.assertEqual(summary.final_state, "done")
        self.assertEqual(summary.total_iterations, 2)
        self.assertEqual(len(summary.llm_calls), 2)
        self.assertEqual(summary.llm_calls[0].tool_calls, 1)
        self.assertEqual([m.status for m in summary.tool_calls], ["success"])
