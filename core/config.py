from __future__ import annotations

"""Lightweight configuration loader for engine policy and extractor settings.

Loads a YAML file from `config/settings.yaml` (or the path in
``DOC_ENGINE_CONFIG``) when present and deep-merges it over the defaults.
Provides helpers to retrieve the scoring policy, intake limits, extractor
model settings and prompt templates.
"""

from typing import Any, Dict, List, Optional
from pathlib import Path
import copy
import logging
import os

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# Policy defaults ------------------------------------------------------------

COMPLETENESS_WEIGHT = 0.5
EVIDENCE_WEIGHT = 0.3
CLARITY_WEIGHT = 0.2
READINESS_THRESHOLD = 0.75
PLACEHOLDER_TERMS = ("tbd", "to be determined", "lorem ipsum", "fill me")
MAX_QUESTIONS_PER_PROMPT = 4
MIN_DESCRIPTION_LENGTH = 80
DEFAULT_DOC_TYPE = "project_concept_note"

DEFAULT_EXTRACTOR_SYSTEM_PROMPT = (
    "You extract structured answers for the {doc_name}.\n"
    "Here are the fields you can populate:\n{field_context}\n\n"
    "Existing dossier values:\n{existing}\n\n"
    "If the latest user reply does not add new information for a field, return an empty list.\n"
    "Do not infer beyond what the user states."
)


class ScoringPolicy(BaseModel):
    """Weights and gate used to turn a dossier into a readiness decision."""

    completeness_weight: float = COMPLETENESS_WEIGHT
    evidence_weight: float = EVIDENCE_WEIGHT
    clarity_weight: float = CLARITY_WEIGHT
    readiness_threshold: float = READINESS_THRESHOLD
    placeholder_terms: List[str] = Field(default_factory=lambda: list(PLACEHOLDER_TERMS))


_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def _default_config() -> Dict[str, Any]:
    return {
        "engine": {
            "completeness_weight": COMPLETENESS_WEIGHT,
            "evidence_weight": EVIDENCE_WEIGHT,
            "clarity_weight": CLARITY_WEIGHT,
            "readiness_threshold": READINESS_THRESHOLD,
            "placeholder_terms": list(PLACEHOLDER_TERMS),
            "max_questions_per_prompt": MAX_QUESTIONS_PER_PROMPT,
            "min_description_length": MIN_DESCRIPTION_LENGTH,
            "default_doc_type": DEFAULT_DOC_TYPE,
            "fallback_to_default_doc_type": False,
        },
        "catalog": {
            "path": None,
        },
        "renderer": {
            "default": "markdown",
        },
        "extractor": {
            "default": "rules",
            "llm": {"model": "gpt-4o-mini", "temperature": 0, "max_tokens": 500},
        },
        "prompts": {
            "extractor": {"system": DEFAULT_EXTRACTOR_SYSTEM_PROMPT},
        },
    }


def _config_path() -> Path:
    return Path(os.getenv("DOC_ENGINE_CONFIG") or "config/settings.yaml")


def load_config() -> Dict[str, Any]:
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE
    base = _default_config()
    path = _config_path()
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            logger.warning(f"⚠️ CONFIG: Ignoring unreadable settings file {path}: {e}")
            data = {}
        if isinstance(data, dict):
            merged = copy.deepcopy(base)
            _deep_merge(merged, data)
            _CONFIG_CACHE = merged
            logger.debug(f"CONFIG: Loaded overrides from {path}")
            return merged
    _CONFIG_CACHE = base
    return base


def clear_config_cache() -> None:
    """Drop the cached configuration so the next call reloads it (tests)."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = None


def _deep_merge(dst: Dict[str, Any], src: Dict[str, Any]) -> None:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v


def _engine_config() -> Dict[str, Any]:
    return load_config().get("engine", {})


def get_scoring_policy() -> ScoringPolicy:
    """Return the scoring policy with any configured overrides applied."""
    engine = _engine_config()
    fields = ScoringPolicy.model_fields.keys()
    return ScoringPolicy(**{k: v for k, v in engine.items() if k in fields and v is not None})


def get_engine_setting(name: str, default: Any = None) -> Any:
    return _engine_config().get(name, default)


def get_catalog_path() -> Optional[str]:
    env_path = os.getenv("DOC_TYPES_PATH")
    if env_path:
        return env_path
    return load_config().get("catalog", {}).get("path")


def get_extractor_name() -> str:
    return str(load_config().get("extractor", {}).get("default") or "rules")


def get_renderer_name() -> str:
    return str(load_config().get("renderer", {}).get("default") or "markdown")


def get_extractor_llm_config() -> Dict[str, Any]:
    """Return model settings for the model-backed extractor."""
    cfg = load_config().get("extractor", {}).get("llm", {})
    return dict(cfg) if isinstance(cfg, dict) else {}


def get_prompt(name: str) -> Optional[str]:
    """Return the configured system prompt template for a component."""
    prompts = load_config().get("prompts", {})
    entry = prompts.get(name)
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        for key in ("system", "template", "prompt", "text"):
            val = entry.get(key)
            if isinstance(val, str):
                return val
    return None


__all__ = [
    "ScoringPolicy",
    "load_config",
    "clear_config_cache",
    "get_scoring_policy",
    "get_engine_setting",
    "get_catalog_path",
    "get_extractor_name",
    "get_extractor_llm_config",
    "get_renderer_name",
    "get_prompt",
]
