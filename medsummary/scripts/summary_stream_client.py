from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Iterable

import httpx


def parse_sse_lines(lines: Iterable[str]) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    for raw in lines:
        line = raw.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if not data:
            continue
        try:
            payload = json.loads(data)
        except ValueError:
            events.append({"event": "invalid", "raw": data})
            continue
        if isinstance(payload, dict):
            events.append(payload)
    return events


def _format_event(event: dict[str, Any]) -> str:
    kind = str(event.get("event", ""))
    if kind == "message":
        content = event.get("content")
        if isinstance(content, str):
            return content
        return json.dumps(content, ensure_ascii=False)
    if kind == "invalid":
        return f"\n[invalid] {event.get('raw', '')}"
    return f"\n[{kind}] {event.get('message', '')}"


def stream_summary(base_url: str, visit_id: str, doctor_id: str, patient_id: str, timeout_sec: float) -> int:
    url = f"{base_url.rstrip('/')}/medical-summary/generate/{visit_id}"
    params = {"doctor_id": doctor_id, "patient_id": patient_id}
    last_kind = ""
    with httpx.Client(timeout=httpx.Timeout(timeout_sec, connect=8.0)) as client:
        with client.stream("POST", url, params=params) as response:
            if response.status_code >= 400:
                response.read()
                print(f"HTTP {response.status_code}: {response.text}", file=sys.stderr)
                return 2
            for line in response.iter_lines():
                for event in parse_sse_lines([line]):
                    last_kind = str(event.get("event", ""))
                    sys.stdout.write(_format_event(event))
                    sys.stdout.flush()
    sys.stdout.write("\n")
    return 0 if last_kind == "completed" else 1


def main() -> int:
    ap = argparse.ArgumentParser(description="Stream a medical summary from a running medsummary server.")
    ap.add_argument("visit_id", type=str)
    ap.add_argument("--doctor-id", type=str, required=True)
    ap.add_argument("--patient-id", type=str, required=True)
    ap.add_argument("--base-url", type=str, default="http://127.0.0.1:8000")
    ap.add_argument("--timeout", type=float, default=120.0, help="Max idle seconds between events.")
    args = ap.parse_args()
    return stream_summary(args.base_url, args.visit_id, args.doctor_id, args.patient_id, args.timeout)


if __name__ == "__main__":
    raise SystemExit(main())
