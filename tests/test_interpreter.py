"""
Tests for core/interpreter.py

Run with: pytest tests/test_interpreter.py
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from core.errors import InterpretationCancelled, InterpretationFailed
from core.interpreter import (
    InterpretationClient,
    ServiceChunkSource,
    parse_final,
    parse_partial,
)
from core.models import InterpretationRequest
from fakes import AI_NEWS_FINAL, ScriptedSource, eventually

FINAL_JSON = json.dumps(AI_NEWS_FINAL)


def chunks_of(text: str, size: int) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


def list_source(chunks: list[str]):
    async def source(request):
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk
    return source


async def collect(call) -> list:
    return [snapshot async for snapshot in call.partials()]


# ── Parsing ────────────────────────────────────────────────────────────────


class TestParsePartial:
    def test_empty_buffer_is_none(self):
        assert parse_partial("") is None

    def test_non_object_is_none(self):
        assert parse_partial("[1, 2") is None

    def test_open_object_with_complete_string(self):
        result = parse_partial('{"what": {"topic": "AI news"')
        assert result is not None
        assert result.what.topic == "AI news"

    def test_complete_document(self):
        assert parse_partial(FINAL_JSON).what.topic == "AI news"


class TestParseFinal:
    def test_valid_document(self):
        interp = parse_final(FINAL_JSON)
        assert interp.when.frequency == "daily"

    def test_malformed_json_fails(self):
        with pytest.raises(InterpretationFailed, match="Malformed"):
            parse_final('{"what": ')

    def test_incomplete_document_fails(self):
        with pytest.raises(InterpretationFailed, match="why.intent"):
            parse_final(json.dumps({**AI_NEWS_FINAL, "why": {}}))

    def test_invalid_topic_fails(self):
        data = json.loads(FINAL_JSON)
        data["what"]["isValid"] = False
        with pytest.raises(InterpretationFailed, match="not something a radar can track"):
            parse_final(json.dumps(data))


# ── Calls ──────────────────────────────────────────────────────────────────


class TestInterpretationCall:
    @pytest.mark.asyncio
    async def test_blank_text_rejected(self):
        client = InterpretationClient(source=list_source([]))
        with pytest.raises(ValueError, match="empty"):
            client.interpret("   ")

    @pytest.mark.asyncio
    async def test_request_carries_trimmed_text_and_unique_id(self):
        client = InterpretationClient(source=list_source([FINAL_JSON]))
        first = client.interpret("  ai news ")
        second = client.interpret("ai news")
        assert first.request.text == "ai news"
        assert first.request_id != second.request_id
        first.cancel()
        second.cancel()

    @pytest.mark.asyncio
    async def test_partials_then_final(self):
        client = InterpretationClient(source=list_source(chunks_of(FINAL_JSON, 12)))
        call = client.interpret("ai news")

        snapshots = await collect(call)
        final = await call.final

        assert snapshots
        assert snapshots[-1].what.topic == "AI news"
        assert final.recommended_cadence() == "daily"

    @pytest.mark.asyncio
    async def test_partials_are_monotonic(self):
        client = InterpretationClient(source=list_source(chunks_of(FINAL_JSON, 5)))
        call = client.interpret("ai news")
        snapshots = await collect(call)

        for earlier, later in zip(snapshots, snapshots[1:]):
            before = earlier.model_dump(exclude_none=True)
            after = later.model_dump(exclude_none=True)
            for section, values in before.items():
                for key, value in values.items():
                    if value not in (None, "", []):
                        assert after[section][key] not in (None, "", [])

    @pytest.mark.asyncio
    async def test_second_call_does_not_cancel_first(self):
        source = ScriptedSource()
        client = InterpretationClient(source=source)
        first = client.interpret("ai news")
        second = client.interpret("ai newsletters")
        assert not first.cancelled
        source.complete(index=0)
        assert (await first.final).what.topic == "AI news"
        second.cancel()

    @pytest.mark.asyncio
    async def test_stream_error_rejects_final(self):
        source = ScriptedSource()
        call = InterpretationClient(source=source).interpret("ai news")
        source.feed('{"what": {"topic": "AI news"')
        source.fail(httpx.ConnectError("connection refused"))
        with pytest.raises(InterpretationFailed, match="connection refused"):
            await call.final

    @pytest.mark.asyncio
    async def test_malformed_stream_rejects_final(self):
        call = InterpretationClient(source=list_source(['{"what": {"topic": "AI"}}'])).interpret("ai")
        with pytest.raises(InterpretationFailed):
            await call.final


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_rejects_final(self):
        source = ScriptedSource()
        call = InterpretationClient(source=source).interpret("ai news")
        call.cancel()
        with pytest.raises(InterpretationCancelled):
            await call.final

    @pytest.mark.asyncio
    async def test_cancel_twice_is_harmless(self):
        source = ScriptedSource()
        call = InterpretationClient(source=source).interpret("ai news")
        call.cancel()
        call.cancel()
        assert call.cancelled
        with pytest.raises(InterpretationCancelled):
            await call.final

    @pytest.mark.asyncio
    async def test_nothing_observed_after_cancel(self):
        source = ScriptedSource()
        call = InterpretationClient(source=source).interpret("ai news")
        source.feed('{"what": {"topic": "AI news"')
        await eventually(lambda: not call._snapshots.empty())

        call.cancel()
        source.complete()
        await asyncio.sleep(0.01)

        assert await collect(call) == []
        assert isinstance(call.final.exception(), InterpretationCancelled)

    @pytest.mark.asyncio
    async def test_cancel_after_completion_keeps_result(self):
        call = InterpretationClient(source=list_source([FINAL_JSON])).interpret("ai news")
        result = await call.final
        call.cancel()
        assert call.final.result() is result


# ── Service chunk source ───────────────────────────────────────────────────


def sse_body(*events: object) -> bytes:
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode()


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://radar.test")


class TestServiceChunkSource:
    @pytest.mark.asyncio
    async def test_reads_chunks_until_done(self, settings):
        seen_requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_requests.append(request)
            body = sse_body(
                {"type": "chunk", "text": '{"what": '},
                {"type": "chunk", "text": '{"topic": "AI news"}}'},
                "[DONE]",
            )
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        async with mock_client(handler) as http:
            source = ServiceChunkSource(settings, http_client=http)
            request = InterpretationRequest(text="ai news", request_id="r1")
            chunks = [c async for c in source(request)]

        assert "".join(chunks) == '{"what": {"topic": "AI news"}}'
        assert seen_requests[0].url.path == "/api/interpret"
        assert json.loads(seen_requests[0].content) == {"text": "ai news"}

    @pytest.mark.asyncio
    async def test_error_event_raises(self, settings):
        def handler(request):
            return httpx.Response(200, content=sse_body({"type": "error", "message": "rate limited"}, "[DONE]"))

        async with mock_client(handler) as http:
            source = ServiceChunkSource(settings, http_client=http)
            with pytest.raises(InterpretationFailed, match="rate limited"):
                [c async for c in source(InterpretationRequest(text="ai", request_id="r"))]

    @pytest.mark.asyncio
    async def test_missing_terminator_raises(self, settings):
        def handler(request):
            return httpx.Response(200, content=sse_body({"type": "chunk", "text": "{"}))

        async with mock_client(handler) as http:
            source = ServiceChunkSource(settings, http_client=http)
            with pytest.raises(InterpretationFailed, match="ended unexpectedly"):
                [c async for c in source(InterpretationRequest(text="ai", request_id="r"))]

    @pytest.mark.asyncio
    async def test_http_error_surfaces_through_call(self, settings):
        def handler(request):
            return httpx.Response(500, json={"error": "boom"})

        async with mock_client(handler) as http:
            client = InterpretationClient(settings, source=ServiceChunkSource(settings, http_client=http))
            call = client.interpret("ai news")
            with pytest.raises(InterpretationFailed):
                await call.final

    def test_default_source_requires_settings(self):
        with pytest.raises(ValueError, match="Settings"):
            InterpretationClient().source
