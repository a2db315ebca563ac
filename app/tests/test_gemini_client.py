import asyncio
import json
import unittest

import httpx

from app.core.errors import UpstreamError
from app.llm.gemini_client import GeminiClient, extract_text


def _client(handler, api_key=lambda: "k-123"):
    return GeminiClient(
        base_url="https://gemini.test/v1beta/",
        model="gemini-test",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


def _run(client, prompt="hi"):
    async def go():
        try:
            return await client.generate(prompt)
        finally:
            await client.aclose()

    return asyncio.run(go())


class TestExtractText(unittest.TestCase):
    def test_well_formed(self):
        data = {"candidates": [{"content": {"parts": [{"text": "hello"}]}}]}
        self.assertEqual(extract_text(data), "hello")

    def test_missing_levels(self):
        for data in (
            {},
            {"candidates": []},
            {"candidates": [{}]},
            {"candidates": [{"content": {}}]},
            {"candidates": [{"content": {"parts": []}}]},
            {"candidates": [{"content": {"parts": [{}]}}]},
            [],
            None,
        ):
            self.assertIsNone(extract_text(data), data)


class TestGeminiClient(unittest.TestCase):
    def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["key"] = request.url.params.get("key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

        self.assertEqual(_run(_client(handler), "What is 2+2?"), "ok")
        self.assertEqual(seen["method"], "POST")
        self.assertEqual(seen["path"], "/v1beta/models/gemini-test:generateContent")
        self.assertEqual(seen["key"], "k-123")
        self.assertEqual(seen["body"], {"contents": [{"parts": [{"text": "What is 2+2?"}]}]})

    def test_api_key_read_per_call(self):
        keys = iter(["first", "second"])
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params.get("key"))
            return httpx.Response(200, json={})

        client = _client(handler, api_key=lambda: next(keys))

        async def go():
            await client.generate("a")
            await client.generate("b")
            await client.aclose()

        asyncio.run(go())
        self.assertEqual(seen, ["first", "second"])

    def test_empty_candidates_is_none(self):
        self.assertIsNone(_run(_client(lambda r: httpx.Response(200, json={"candidates": []}))))

    def test_non_2xx_raises(self):
        with self.assertRaises(UpstreamError) as ctx:
            _run(_client(lambda r: httpx.Response(503, json={"error": {"message": "busy"}})))
        self.assertEqual(ctx.exception.upstream_status, 503)
        self.assertEqual(ctx.exception.status_code, 500)

    def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(UpstreamError) as ctx:
            _run(_client(handler))
        self.assertNotIn("k-123", ctx.exception.detail)

    def test_non_json_body_raises(self):
        with self.assertRaises(UpstreamError):
            _run(_client(lambda r: httpx.Response(200, text="<html>oops</html>")))
