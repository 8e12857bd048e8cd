import json
import unittest
from unittest import mock

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from agent.config import AgentConfig
from agent.exceptions import ModelStreamError
from agent.models import ChatCompletionsClient, ChatStream


class _FakeContent:
    def __init__(self, lines, error=None):
        self.lines = lines
        self.error = error

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for line in self.lines:
            yield line
        if self.error is not None:
            raise self.error


def _stream(lines, error=None):
    response = mock.Mock()
    response.content = _FakeContent(lines, error)
    session = mock.Mock()
    session.close = mock.AsyncMock()
    return ChatStream(session, response), session, response


class TestParseSseLine(unittest.TestCase):
    def test_delta(self):
        delta, done = ChatStream.parse_sse_line(
            b'data: {"choices": [{"index": 0, "delta": {"content": "Hi"}}]}\n'
        )
        self.assertEqual(delta, {"content": "Hi"})
        self.assertFalse(done)

    def test_done_sentinel(self):
        self.assertEqual(ChatStream.parse_sse_line("data: [DONE]"), (None, True))

    def test_ignored_lines(self):
        for line in [b"\n", b": keep-alive\n", b"event: ping\n", 'data: {"choices": []}']:
            with self.subTest(line=line):
                self.assertEqual(ChatStream.parse_sse_line(line), (None, False))

    def test_malformed_chunk_is_skipped(self):
        with self.assertLogs("agent.models", level="WARNING"):
            self.assertEqual(ChatStream.parse_sse_line(b"data: {oops"), (None, False))

    def test_missing_delta_is_empty(self):
        delta, _ = ChatStream.parse_sse_line('data: {"choices": [{"finish_reason": "stop"}]}')
        self.assertEqual(delta, {})


class TestChatStream(unittest.IsolatedAsyncioTestCase):
    async def test_yields_deltas_until_done(self):
        stream, session, response = _stream([
            b'data: {"choices": [{"delta": {"content": "He"}}]}\n',
            b"\n",
            b'data: {"choices": [{"delta": {"content": "llo"}}]}\n',
            b"data: [DONE]\n",
            b'data: {"choices": [{"delta": {"content": "ignored"}}]}\n',
        ])

        deltas = [d async for d in stream]
        await stream.aclose()
        await stream.aclose()

        self.assertEqual(deltas, [{"content": "He"}, {"content": "llo"}])
        response.release.assert_called_once()
        session.close.assert_awaited_once()

    async def test_connection_error_mid_stream(self):
        stream, _, _ = _stream(
            [b'data: {"choices": [{"delta": {"content": "He"}}]}\n'],
            error=aiohttp.ClientPayloadError("connection reset"),
        )
        with self.assertRaises(ModelStreamError):
            async for _ in stream:
                pass


class TestChatCompletionsClient(unittest.TestCase):
    def test_payload_wraps_tools(self):
        client = ChatCompletionsClient(temperature=0.2)
        schema = {"name": "echo", "description": "d", "parameters": {"type": "object", "properties": {}, "required": []}}

        payload = client.build_payload([{"role": "user", "content": "hi"}], "llama3.2", [schema])

        self.assertTrue(payload["stream"])
        self.assertEqual(payload["model"], "llama3.2")
        self.assertEqual(payload["temperature"], 0.2)
        self.assertEqual(payload["tools"], [{"type": "function", "function": schema}])

    def test_payload_without_tools(self):
        payload = ChatCompletionsClient().build_payload([], "m", [])
        self.assertNotIn("tools", payload)

    def test_auth_header_only_with_key(self):
        self.assertNotIn("Authorization", ChatCompletionsClient()._headers())
        headers = ChatCompletionsClient(api_key="sk-1")._headers()
        self.assertEqual(headers["Authorization"], "Bearer sk-1")

    def test_from_config(self):
        config = AgentConfig()
        config.chat_model.base_url = "http://example:1234/v1/"
        config.provider.read_timeout = 30.0

        client = ChatCompletionsClient.from_config(config)

        self.assertEqual(client.base_url, "http://example:1234/v1")
        self.assertEqual(client._timeout().sock_read, 30.0)


async def _chat_completions(request):
    body = await request.json()
    request.app["payloads"].append(body)
    request.app["auth"].append(request.headers.get("Authorization"))
    if body["model"] == "missing":
        return web.json_response({"error": "model 'missing' not found"}, status=404)

    response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
    await response.prepare(request)
    for piece in ("Hel", "lo"):
        chunk = json.dumps({"choices": [{"index": 0, "delta": {"content": piece}}]})
        await response.write(f"data: {chunk}\n\n".encode())
    await response.write(b"data: [DONE]\n\n")
    await response.write_eof()
    return response


class TestOpenStream(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        app = web.Application()
        app["payloads"] = []
        app["auth"] = []
        app.router.add_post("/v1/chat/completions", _chat_completions)
        self.app = app
        self.server = TestServer(app)
        await self.server.start_server()
        self.base_url = str(self.server.make_url("/v1"))

    async def asyncTearDown(self):
        await self.server.close()

    async def test_streams_deltas(self):
        client = ChatCompletionsClient(base_url=self.base_url, api_key="sk-1")
        stream = await client.open_stream([{"role": "user", "content": "hi"}], "llama3.2")
        try:
            deltas = [d async for d in stream]
        finally:
            await stream.aclose()

        self.assertEqual(deltas, [{"content": "Hel"}, {"content": "lo"}])
        self.assertTrue(self.app["payloads"][0]["stream"])
        self.assertEqual(self.app["auth"][0], "Bearer sk-1")

    async def test_http_error(self):
        client = ChatCompletionsClient(base_url=self.base_url)
        with self.assertRaises(ModelStreamError) as ctx:
            await client.open_stream([{"role": "user", "content": "hi"}], "missing")
        self.assertIn("404", str(ctx.exception))

    async def test_connection_refused(self):
        await self.server.close()
        client = ChatCompletionsClient(base_url=self.base_url, connect_timeout=1.0)
        with self.assertRaises(ModelStreamError):
            await client.open_stream([{"role": "user", "content": "hi"}], "llama3.2")
