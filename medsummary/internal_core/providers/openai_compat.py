from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from medsummary.relay.chunks import CompletedChunk, ContentChunk, SummaryChunk

from .base import SummaryProvider, SummaryProviderError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a clinical documentation assistant. "
    "Summarize the doctor-patient conversation into a concise medical summary with the sections: "
    "symptom details, vital signs, past medical history, current medications. "
    "Only use facts stated in the transcript; write 'not mentioned' for missing sections."
)


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except Exception:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def _delta_text(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0] if isinstance(choices[0], dict) else {}
    delta = first.get("delta")
    if isinstance(delta, dict):
        content = delta.get("content")
        if isinstance(content, str):
            return content
    return ""


class OpenAICompatSummaryProvider(SummaryProvider):
    """Streams chat completions from an OpenAI-compatible `/chat/completions` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        max_tokens: int = 800,
        connect_timeout_sec: float = 8.0,
        read_timeout_sec: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._max_tokens = int(max_tokens)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout_sec, connect=connect_timeout_sec)
        )

    def name(self) -> str:
        return "openai_compat"

    def _request_payload(self, source_text: str, doctor_id: str, patient_id: str) -> dict[str, Any]:
        return {
            "model": self._model,
            "stream": True,
            "temperature": 0.2,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"doctor_id={doctor_id} patient_id={patient_id}\n"
                        f"Transcript:\n{source_text}"
                    ),
                },
            ],
        }

    async def stream_summary(
        self, source_text: str, doctor_id: str, patient_id: str
    ) -> AsyncIterator[SummaryChunk]:
        if not self._api_key:
            raise SummaryProviderError("UPSTREAM_NOT_CONFIGURED", "SUMMARY_API_KEY is missing", self.name())

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        payload = self._request_payload(source_text, doctor_id, patient_id)
        async with self._client.stream(
            "POST", f"{self._base_url}/chat/completions", headers=headers, json=payload
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise SummaryProviderError(
                    f"UPSTREAM_HTTP_{response.status_code}",
                    _provider_error_message(response),
                    self.name(),
                )
            async for line in response.aiter_lines():
                line = line.strip()
                if not line or not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    yield CompletedChunk()
                    return
                try:
                    event = json.loads(data)
                except ValueError as exc:
                    raise SummaryProviderError(
                        "UPSTREAM_BAD_PAYLOAD", f"Invalid upstream event: {exc}", self.name()
                    ) from exc
                if not isinstance(event, dict):
                    continue
                err = event.get("error")
                if err:
                    message = err.get("message") if isinstance(err, dict) else str(err)
                    raise SummaryProviderError("UPSTREAM_STREAM_ERROR", str(message), self.name())
                text = _delta_text(event)
                if text:
                    yield ContentChunk(text=text)

        logger.warning("upstream stream closed without [DONE] model=%s", self._model)
        raise SummaryProviderError(
            "UPSTREAM_INCOMPLETE", "Upstream stream ended before the [DONE] marker", self.name()
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
