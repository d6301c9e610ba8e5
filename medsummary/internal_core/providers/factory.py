from __future__ import annotations

import logging

from ..config import RelayConfig
from .base import SummaryProvider
from .llama_cpp import LlamaCppSummaryProvider
from .mock import MockSummaryProvider
from .openai_compat import OpenAICompatSummaryProvider

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai_compat", "llama_cpp", "mock")


def build_summary_provider(cfg: RelayConfig) -> SummaryProvider:
    name = cfg.SUMMARY_PROVIDER
    if name not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unsupported SUMMARY_PROVIDER={name!r}; expected one of {', '.join(SUPPORTED_PROVIDERS)}"
        )
    if cfg.SUMMARY_TEST_INJECT_UPSTREAM_FAIL:
        logger.warning("SUMMARY_TEST_INJECT_UPSTREAM_FAIL is set; upstream calls will fail")
        return MockSummaryProvider(fail=True)
    if name == "openai_compat":
        return OpenAICompatSummaryProvider(
            base_url=cfg.SUMMARY_API_BASE_URL,
            api_key=cfg.SUMMARY_API_KEY,
            model=cfg.SUMMARY_MODEL,
            max_tokens=cfg.SUMMARY_MAX_TOKENS,
            connect_timeout_sec=cfg.SUMMARY_CONNECT_TIMEOUT_SECONDS,
            read_timeout_sec=cfg.SUMMARY_READ_TIMEOUT_SECONDS,
        )
    if name == "llama_cpp":
        return LlamaCppSummaryProvider(
            model_path=cfg.SUMMARY_LLAMA_CPP_MODEL,
            model_name=cfg.SUMMARY_LLAMA_CPP_MODEL_NAME,
            model_root=cfg.SUMMARY_MODEL_ROOT,
            n_ctx=cfg.SUMMARY_LLAMA_CPP_N_CTX,
            n_gpu_layers=cfg.SUMMARY_LLAMA_CPP_N_GPU_LAYERS,
            chat_format=cfg.SUMMARY_LLAMA_CPP_CHAT_FORMAT,
            max_tokens=cfg.SUMMARY_MAX_TOKENS,
        )
    return MockSummaryProvider()
