from __future__ import annotations

import os
from dataclasses import dataclass


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_non_negative_float(name: str, default: float) -> float:
    value = _getenv_float(name, default)
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


@dataclass(frozen=True)
class RelayConfig:
    SUMMARY_PROVIDER: str
    SUMMARY_API_BASE_URL: str
    SUMMARY_API_KEY: str
    SUMMARY_MODEL: str
    SUMMARY_MAX_TOKENS: int
    SUMMARY_CONNECT_TIMEOUT_SECONDS: float
    SUMMARY_READ_TIMEOUT_SECONDS: float
    SUMMARY_LLAMA_CPP_MODEL: str
    SUMMARY_LLAMA_CPP_MODEL_NAME: str
    SUMMARY_MODEL_ROOT: str
    SUMMARY_LLAMA_CPP_N_CTX: int
    SUMMARY_LLAMA_CPP_N_GPU_LAYERS: int
    SUMMARY_LLAMA_CPP_CHAT_FORMAT: str
    SUMMARY_FALLBACK_INTRO_DELAY_SECONDS: float
    SUMMARY_FALLBACK_LINE_DELAY_SECONDS: float
    SUMMARY_LOG_LEVEL: str
    SUMMARY_TEST_INJECT_UPSTREAM_FAIL: bool


def load_config() -> RelayConfig:
    return RelayConfig(
        SUMMARY_PROVIDER=_getenv_str("SUMMARY_PROVIDER", "mock").strip().lower(),
        SUMMARY_API_BASE_URL=_getenv_str("SUMMARY_API_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        SUMMARY_API_KEY=_getenv_str("SUMMARY_API_KEY", ""),
        SUMMARY_MODEL=_getenv_str("SUMMARY_MODEL", "gpt-4o-mini"),
        SUMMARY_MAX_TOKENS=_getenv_int("SUMMARY_MAX_TOKENS", 800),
        SUMMARY_CONNECT_TIMEOUT_SECONDS=_getenv_non_negative_float("SUMMARY_CONNECT_TIMEOUT_SECONDS", 8.0),
        SUMMARY_READ_TIMEOUT_SECONDS=_getenv_non_negative_float("SUMMARY_READ_TIMEOUT_SECONDS", 60.0),
        SUMMARY_LLAMA_CPP_MODEL=_getenv_str("SUMMARY_LLAMA_CPP_MODEL", "").strip(),
        SUMMARY_LLAMA_CPP_MODEL_NAME=_getenv_str("SUMMARY_LLAMA_CPP_MODEL_NAME", "medical-summary.gguf").strip(),
        SUMMARY_MODEL_ROOT=_getenv_str("SUMMARY_MODEL_ROOT", "").strip(),
        SUMMARY_LLAMA_CPP_N_CTX=_getenv_int("SUMMARY_LLAMA_CPP_N_CTX", 4096),
        SUMMARY_LLAMA_CPP_N_GPU_LAYERS=_getenv_int("SUMMARY_LLAMA_CPP_N_GPU_LAYERS", -1),
        SUMMARY_LLAMA_CPP_CHAT_FORMAT=_getenv_str("SUMMARY_LLAMA_CPP_CHAT_FORMAT", "gemma"),
        SUMMARY_FALLBACK_INTRO_DELAY_SECONDS=_getenv_non_negative_float(
            "SUMMARY_FALLBACK_INTRO_DELAY_SECONDS", 0.5
        ),
        SUMMARY_FALLBACK_LINE_DELAY_SECONDS=_getenv_non_negative_float(
            "SUMMARY_FALLBACK_LINE_DELAY_SECONDS", 0.1
        ),
        SUMMARY_LOG_LEVEL=_getenv_str("SUMMARY_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        SUMMARY_TEST_INJECT_UPSTREAM_FAIL=_getenv_bool("SUMMARY_TEST_INJECT_UPSTREAM_FAIL", False),
    )
