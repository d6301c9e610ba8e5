import asyncio
import json
import sys
import threading
import time
import types
from dataclasses import replace
from pathlib import Path

import httpx
import pytest

from medsummary.internal_core.config import load_config
from medsummary.internal_core.providers import (
    LlamaCppSummaryProvider,
    MockSummaryProvider,
    OpenAICompatSummaryProvider,
    SummaryProviderError,
    build_summary_provider,
)
from medsummary.relay.chunks import CompletedChunk, ContentChunk
from medsummary.utils.model_paths import resolve_summary_gguf_path, summary_model_candidates


def _collect(provider, source_text: str = "Patient reports cough.") -> list:
    async def _run():
        return [chunk async for chunk in provider.stream_summary(source_text, "doc_1", "pat_1")]

    return asyncio.run(_run())


def _sse_body(*payloads: object, done: bool = True) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def _delta(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def _openai_provider(handler, api_key: str = "sk-test") -> OpenAICompatSummaryProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatSummaryProvider(
        base_url="https://llm.example/v1/",
        api_key=api_key,
        model="test-model",
        max_tokens=64,
        client=client,
    )


def test_openai_compat_streams_deltas_until_done() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        body = _sse_body(_delta("Sore "), {"choices": [{"delta": {}}]}, _delta("throat."))
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    chunks = _collect(_openai_provider(handler))

    assert chunks == [ContentChunk(text="Sore "), ContentChunk(text="throat."), CompletedChunk()]
    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["stream"] is True
    assert seen["body"]["model"] == "test-model"
    assert "Patient reports cough." in seen["body"]["messages"][-1]["content"]


def test_openai_compat_without_done_marker_is_incomplete() -> None:
    received: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse_body(_delta("only"), done=False))

    async def _run():
        async for chunk in _openai_provider(handler).stream_summary("text", "doc_1", "pat_1"):
            received.append(chunk)

    with pytest.raises(SummaryProviderError) as exc_info:
        asyncio.run(_run())
    assert exc_info.value.code == "UPSTREAM_INCOMPLETE"
    assert received == [ContentChunk(text="only")]


def test_openai_compat_http_error_raises_coded_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(_openai_provider(handler))
    assert exc_info.value.code == "UPSTREAM_HTTP_429"
    assert exc_info.value.message == "rate limited"


def test_openai_compat_stream_error_and_bad_payload() -> None:
    def error_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse_body(_delta("a"), {"error": {"message": "overloaded"}}))

    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(_openai_provider(error_handler))
    assert exc_info.value.code == "UPSTREAM_STREAM_ERROR"

    def garbage_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse_body("{not json"))

    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(_openai_provider(garbage_handler))
    assert exc_info.value.code == "UPSTREAM_BAD_PAYLOAD"


def test_openai_compat_missing_key_fails_before_request() -> None:
    calls: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=_sse_body())

    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(_openai_provider(handler, api_key=""))
    assert exc_info.value.code == "UPSTREAM_NOT_CONFIGURED"
    assert calls == []


def test_mock_provider_emits_progress_then_structured_summary() -> None:
    chunks = _collect(MockSummaryProvider(), "abc")
    assert chunks[0] == ContentChunk(text="(mock) summarizing transcript of 3 characters\n")
    structured = json.loads(chunks[1].text)
    assert structured["properties"]["doctor_id"] == "doc_1"
    assert structured["properties"]["patient_id"] == "pat_1"
    assert chunks[-1] == CompletedChunk()


def test_mock_provider_injected_failure() -> None:
    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(MockSummaryProvider(fail=True))
    assert exc_info.value.code == "UPSTREAM_INJECTED_FAIL"


def test_factory_selects_provider_by_name(monkeypatch) -> None:
    monkeypatch.delenv("SUMMARY_PROVIDER", raising=False)
    monkeypatch.delenv("SUMMARY_TEST_INJECT_UPSTREAM_FAIL", raising=False)
    cfg = load_config()
    assert isinstance(build_summary_provider(cfg), MockSummaryProvider)
    assert isinstance(
        build_summary_provider(replace(cfg, SUMMARY_PROVIDER="openai_compat")), OpenAICompatSummaryProvider
    )
    assert isinstance(build_summary_provider(replace(cfg, SUMMARY_PROVIDER="llama_cpp")), LlamaCppSummaryProvider)

    with pytest.raises(ValueError, match="Unsupported SUMMARY_PROVIDER"):
        build_summary_provider(replace(cfg, SUMMARY_PROVIDER="carrier_pigeon"))


def test_factory_inject_fail_overrides_provider(monkeypatch) -> None:
    monkeypatch.setenv("SUMMARY_PROVIDER", "openai_compat")
    monkeypatch.setenv("SUMMARY_TEST_INJECT_UPSTREAM_FAIL", "1")
    provider = build_summary_provider(load_config())
    assert isinstance(provider, MockSummaryProvider)
    with pytest.raises(SummaryProviderError):
        _collect(provider)


class _FakeLlama:
    init_kwargs: list = []

    def __init__(self, **kwargs):
        type(self).init_kwargs.append(kwargs)

    def create_chat_completion(self, **kwargs):
        assert kwargs["stream"] is True
        return iter(
            [
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Cough "}}]},
                {"choices": [{"delta": {"content": "for 3 days."}}]},
            ]
        )


def test_llama_cpp_provider_streams_with_fake_module(monkeypatch, tmp_path: Path) -> None:
    model_file = tmp_path / "summary.gguf"
    model_file.write_bytes(b"gguf")
    fake_module = types.ModuleType("llama_cpp")
    fake_module.Llama = _FakeLlama
    monkeypatch.setitem(sys.modules, "llama_cpp", fake_module)
    _FakeLlama.init_kwargs = []

    provider = LlamaCppSummaryProvider(model_path=str(model_file), n_ctx=512, chat_format="gemma")
    chunks = _collect(provider)

    assert chunks == [ContentChunk(text="Cough "), ContentChunk(text="for 3 days."), CompletedChunk()]
    assert _FakeLlama.init_kwargs[0]["model_path"] == str(model_file)
    assert _FakeLlama.init_kwargs[0]["n_ctx"] == 512

    # Model is loaded once per provider.
    _collect(provider)
    assert len(_FakeLlama.init_kwargs) == 1


def test_llama_cpp_provider_missing_model_raises(tmp_path: Path) -> None:
    provider = LlamaCppSummaryProvider(model_path=str(tmp_path / "absent.gguf"))
    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(provider)
    assert exc_info.value.code == "LLAMA_MODEL_MISSING"


def test_llama_cpp_provider_bad_chunk_raises(monkeypatch, tmp_path: Path) -> None:
    class BrokenLlama(_FakeLlama):
        def create_chat_completion(self, **kwargs):
            return iter([{"unexpected": True}])

    model_file = tmp_path / "summary.gguf"
    model_file.write_bytes(b"gguf")
    fake_module = types.ModuleType("llama_cpp")
    fake_module.Llama = BrokenLlama
    monkeypatch.setitem(sys.modules, "llama_cpp", fake_module)

    with pytest.raises(SummaryProviderError) as exc_info:
        _collect(LlamaCppSummaryProvider(model_path=str(model_file)))
    assert exc_info.value.code == "LLAMA_BAD_CHUNK"


def test_llama_cpp_provider_serializes_concurrent_generations(monkeypatch, tmp_path: Path) -> None:
    state = {"active": 0, "max_active": 0}
    guard = threading.Lock()

    def _tokens():
        for token in ("a", "b", "c"):
            with guard:
                state["active"] += 1
                state["max_active"] = max(state["max_active"], state["active"])
            time.sleep(0.01)
            with guard:
                state["active"] -= 1
            yield {"choices": [{"delta": {"content": token}}]}

    class CountingLlama(_FakeLlama):
        def create_chat_completion(self, **kwargs):
            return _tokens()

    model_file = tmp_path / "summary.gguf"
    model_file.write_bytes(b"gguf")
    fake_module = types.ModuleType("llama_cpp")
    fake_module.Llama = CountingLlama
    monkeypatch.setitem(sys.modules, "llama_cpp", fake_module)
    provider = LlamaCppSummaryProvider(model_path=str(model_file))

    async def _consume():
        return [chunk async for chunk in provider.stream_summary("text", "doc_1", "pat_1")]

    async def _run():
        return await asyncio.gather(_consume(), _consume())

    first, second = asyncio.run(_run())
    assert first == second == [ContentChunk(text="a"), ContentChunk(text="b"), ContentChunk(text="c"), CompletedChunk()]
    assert state["max_active"] == 1


def test_summary_model_discovered_under_model_root(tmp_path: Path) -> None:
    model_file = tmp_path / "visit-summary.gguf"
    model_file.write_bytes(b"gguf")

    resolved = resolve_summary_gguf_path("", model_name="visit-summary.gguf", model_root=str(tmp_path))
    assert resolved == str(model_file.resolve())
    assert resolve_summary_gguf_path("", model_name="absent.gguf", model_root=str(tmp_path)) == ""
    assert resolve_summary_gguf_path("/models/explicit.gguf", model_root=str(tmp_path)) == "/models/explicit.gguf"
    assert summary_model_candidates("visit-summary.gguf", str(tmp_path))[0] == tmp_path / "visit-summary.gguf"


def test_llama_cpp_provider_uses_configured_model_name(monkeypatch, tmp_path: Path) -> None:
    (tmp_path / "visit-summary.gguf").write_bytes(b"gguf")
    monkeypatch.setenv("SUMMARY_PROVIDER", "llama_cpp")
    monkeypatch.setenv("SUMMARY_LLAMA_CPP_MODEL", "")
    monkeypatch.setenv("SUMMARY_LLAMA_CPP_MODEL_NAME", "visit-summary.gguf")
    monkeypatch.setenv("SUMMARY_MODEL_ROOT", str(tmp_path))
    monkeypatch.delenv("SUMMARY_TEST_INJECT_UPSTREAM_FAIL", raising=False)
    fake_module = types.ModuleType("llama_cpp")
    fake_module.Llama = _FakeLlama
    monkeypatch.setitem(sys.modules, "llama_cpp", fake_module)
    _FakeLlama.init_kwargs = []

    provider = build_summary_provider(load_config())
    assert _collect(provider)[-1] == CompletedChunk()
    assert _FakeLlama.init_kwargs[0]["model_path"] == str((tmp_path / "visit-summary.gguf").resolve())


def test_mock_provider_is_stateless_across_calls() -> None:
    provider = MockSummaryProvider()
    assert _collect(provider, "same") == _collect(provider, "same")
    assert not any(name.startswith("_counter") for name in vars(provider))
