"""
Known completion models for the AI response pipeline.

Single source of truth for the model names a request may ask for via
``modelSettings.model_name``. Anything outside this list is not rejected:
it is replaced with the configured default model and a warning is
logged, so callers should treat ``model_name`` as advisory.

Adding a new model:
    1. Add an entry to _MODELS below.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ModelSpec:
    """Immutable specification for a single supported model.

    Attributes:
        id: Canonical model identifier (e.g. ``"gpt-4o"``).
        max_output_tokens: Maximum tokens the model can generate.
    """

    id: str
    max_output_tokens: int


_MODELS: dict[str, ModelSpec] = {
    "gpt-3.5-turbo": ModelSpec(
        id="gpt-3.5-turbo",
        max_output_tokens=4_096,
    ),
    "gpt-4": ModelSpec(
        id="gpt-4",
        max_output_tokens=8_192,
    ),
    "gpt-4-turbo": ModelSpec(
        id="gpt-4-turbo",
        max_output_tokens=4_096,
    ),
    "gpt-4o": ModelSpec(
        id="gpt-4o",
        max_output_tokens=16_384,
    ),
    "gpt-4o-mini": ModelSpec(
        id="gpt-4o-mini",
        max_output_tokens=16_384,
    ),
    "gpt-4.1": ModelSpec(
        id="gpt-4.1",
        max_output_tokens=32_768,
    ),
    "gpt-4.1-mini": ModelSpec(
        id="gpt-4.1-mini",
        max_output_tokens=32_768,
    ),
}


def get_model(model_id: str) -> Optional[ModelSpec]:
    """Look up a model by exact ID."""
    return _MODELS.get(model_id)


def is_model_supported(model_id: Optional[str]) -> bool:
    return bool(model_id) and model_id in _MODELS


def resolve_model(requested: Optional[str], default: str) -> str:
    """Return *requested* if it is known, otherwise *default*.

    Args:
        requested: Model name from the request (may be None).
        default: Configured fallback model.

    Returns:
        The model name to send upstream.
    """
    if requested is None or requested == "":
        return default
    if is_model_supported(requested):
        return requested
    logger.warning(
        "model_registry.unknown_model_substituted",
        requested_model=requested,
        model=default,
    )
    return default
