from __future__ import annotations

import asyncio
import os
from typing import Any, AsyncIterator, Iterator, Optional

from medsummary.relay.chunks import CompletedChunk, ContentChunk, SummaryChunk
from medsummary.utils.model_paths import DEFAULT_SUMMARY_MODEL_NAME, resolve_summary_gguf_path

from .base import SummaryProvider, SummaryProviderError
from .openai_compat import SYSTEM_PROMPT

_END = object()


def _next_or_end(iterator: Iterator[Any]) -> Any:
    return next(iterator, _END)


class LlamaCppSummaryProvider(SummaryProvider):
    """Local GGUF model through llama-cpp-python; the model loads on first use."""

    def __init__(
        self,
        *,
        model_path: str = "",
        model_name: str = DEFAULT_SUMMARY_MODEL_NAME,
        model_root: str = "",
        n_ctx: int = 4096,
        n_gpu_layers: int = -1,
        chat_format: str = "gemma",
        max_tokens: int = 800,
    ) -> None:
        self._model_path = model_path
        self._model_name = model_name
        self._model_root = model_root
        self._n_ctx = int(n_ctx)
        self._n_gpu_layers = int(n_gpu_layers)
        self._chat_format = chat_format
        self._max_tokens = int(max_tokens)
        self._llm: Optional[Any] = None
        self._load_lock = asyncio.Lock()
        # One llama.cpp context serves all requests; generations run one at a time.
        self._generate_lock = asyncio.Lock()

    def name(self) -> str:
        return "llama_cpp"

    def _load(self) -> Any:
        resolved = resolve_summary_gguf_path(
            self._model_path, model_name=self._model_name, model_root=self._model_root
        )
        if not resolved:
            raise SummaryProviderError(
                "LLAMA_MODEL_MISSING",
                "Summary model path is missing. Set SUMMARY_LLAMA_CPP_MODEL or place SUMMARY_LLAMA_CPP_MODEL_NAME under SUMMARY_MODEL_ROOT.",
                self.name(),
            )
        if not os.path.exists(resolved):
            raise SummaryProviderError("LLAMA_MODEL_MISSING", f"Summary model file not found: {resolved}", self.name())
        try:
            from llama_cpp import Llama  # type: ignore
        except Exception as exc:
            raise SummaryProviderError("LLAMA_IMPORT_FAILED", f"llama_cpp import failed: {exc}", self.name()) from exc

        llm_kwargs: dict[str, Any] = {
            "model_path": resolved,
            "n_ctx": self._n_ctx,
            "n_gpu_layers": self._n_gpu_layers,
            "verbose": False,
            "chat_format": self._chat_format,
        }
        try:
            return Llama(**llm_kwargs)
        except TypeError as exc:
            if "chat_format" not in str(exc):
                raise
            llm_kwargs.pop("chat_format", None)
            return Llama(**llm_kwargs)

    async def _get_llm(self) -> Any:
        async with self._load_lock:
            if self._llm is None:
                self._llm = await asyncio.to_thread(self._load)
            return self._llm

    async def stream_summary(
        self, source_text: str, doctor_id: str, patient_id: str
    ) -> AsyncIterator[SummaryChunk]:
        llm = await self._get_llm()
        async with self._generate_lock:
            completion = await asyncio.to_thread(
                llm.create_chat_completion,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"doctor_id={doctor_id} patient_id={patient_id}\nTranscript:\n{source_text}",
                    },
                ],
                temperature=0.2,
                max_tokens=self._max_tokens,
                stream=True,
            )
            iterator = iter(completion)
            while True:
                # Each step blocks on token generation; keep it off the event loop.
                item = await asyncio.to_thread(_next_or_end, iterator)
                if item is _END:
                    break
                try:
                    text = item["choices"][0]["delta"].get("content") or ""
                except (KeyError, IndexError, TypeError, AttributeError) as exc:
                    raise SummaryProviderError(
                        "LLAMA_BAD_CHUNK", f"Unexpected llama_cpp chunk: {exc}", self.name()
                    ) from exc
                if text:
                    yield ContentChunk(text=text)
        yield CompletedChunk()
