from __future__ import annotations

from pathlib import Path
from typing import Optional

DEFAULT_SUMMARY_MODEL_NAME = "medical-summary.gguf"


def package_parent() -> Path:
    # medsummary/utils/model_paths.py -> directory holding the medsummary package
    return Path(__file__).resolve().parents[2]


def summary_model_candidates(model_name: str, model_root: Optional[str] = None) -> list[Path]:
    """Candidate GGUF locations, most specific first."""
    name = (model_name or DEFAULT_SUMMARY_MODEL_NAME).strip()
    roots: list[Path] = []
    if model_root and model_root.strip():
        roots.append(Path(model_root.strip()).expanduser())
    roots.extend([Path.cwd() / "models", package_parent() / "models"])

    candidates: list[Path] = []
    for root in roots:
        candidate = root / name
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def resolve_summary_gguf_path(
    explicit_path: Optional[str] = None,
    *,
    model_name: str = DEFAULT_SUMMARY_MODEL_NAME,
    model_root: Optional[str] = None,
) -> str:
    """
    An explicit path wins as-is, even when it does not exist, so the caller can
    report it. Otherwise the first existing candidate is returned, or "".
    """
    explicit = str(explicit_path or "").strip()
    if explicit:
        return str(Path(explicit).expanduser())
    for candidate in summary_model_candidates(model_name, model_root):
        if candidate.is_file():
            return str(candidate.resolve())
    return ""
