"""Model registry and model-name translation for the Cursor upstream."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

log = logging.getLogger("cursor_api")

DEFAULT_MODEL_ID = "anthropic/claude-sonnet-4.6"
HIGH_TIER_CLAUDE_ID = "anthropic/claude-opus-4.6"
GEMINI_MODEL_ID = "google/gemini-3.1-pro"


@dataclass(frozen=True)
class ModelConfig:
    """A model the service advertises and how it maps upstream."""

    id: str
    upstream_id: str
    owned_by: str
    context_length: int
    max_output_tokens: int

    def to_openai_dict(self, created: int) -> Dict[str, Any]:
        """Convert to a `/v1/models` list entry."""
        return {
            "id": self.id,
            "object": "model",
            "created": created,
            "owned_by": self.owned_by,
            "context_length": self.context_length,
            "max_output_tokens": self.max_output_tokens,
            "upstream_model_id": self.upstream_id,
        }


# Entries whose upstream_id lacks a provider qualifier fall through to the heuristics.
MODEL_REGISTRY: Dict[str, ModelConfig] = {
    m.id: m
    for m in (
        ModelConfig("claude-sonnet-4.6", "anthropic/claude-sonnet-4.6", "anthropic", 200_000, 64_000),
        ModelConfig("claude-opus-4.6", "anthropic/claude-opus-4.6", "anthropic", 200_000, 32_000),
        ModelConfig("claude-4.5-sonnet", "anthropic/claude-sonnet-4.5", "anthropic", 200_000, 64_000),
        ModelConfig("gemini-3.1-pro", "google/gemini-3.1-pro", "google", 1_000_000, 65_536),
        ModelConfig("gpt-5", "openai/gpt-5", "openai", 400_000, 128_000),
        ModelConfig("cursor-default", "default", "cursor", 200_000, 64_000),
    )
}


def get_model_config(model_name: str) -> Optional[ModelConfig]:
    return MODEL_REGISTRY.get(model_name)


def list_models() -> List[ModelConfig]:
    return list(MODEL_REGISTRY.values())


def convert_model_name(model_name: str) -> str:
    """
    Translate a caller model name into a provider-qualified upstream identifier.

    Total and deterministic: every input maps to exactly one identifier.
    Order: already qualified -> registry -> substring heuristics -> default.
    """
    if "/" in model_name:
        return model_name

    cfg = get_model_config(model_name)
    if cfg is not None and "/" in cfg.upstream_id:
        return cfg.upstream_id

    name = model_name.lower()
    if "claude" in name:
        if "opus" in name:
            return HIGH_TIER_CLAUDE_ID
        return DEFAULT_MODEL_ID
    if "opus" in name:
        return HIGH_TIER_CLAUDE_ID
    if "gemini" in name:
        return GEMINI_MODEL_ID
    # gpt-* and anything unknown land on the default model
    return DEFAULT_MODEL_ID
