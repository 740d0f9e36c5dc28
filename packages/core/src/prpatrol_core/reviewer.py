"""Model provider selection for the review step."""

from __future__ import annotations

from prpatrol_core.providers.anthropic import AnthropicReviewer
from prpatrol_core.providers.base import BaseReviewer
from prpatrol_core.providers.openai import OpenAIReviewer


def build_reviewer(config: dict) -> BaseReviewer:
    """Instantiate the reviewer named by ``config["model"]``.

    Raises ValueError for an unknown provider or a missing API key.
    """
    model = config["model"]
    options = {
        "model": config.get("model_name"),
        "max_tokens": config.get("max_tokens", 4000),
        "trivial_threshold": config.get("trivial_change_threshold", 5),
    }
    if model == "anthropic":
        if not config.get("anthropic_api_key"):
            raise ValueError("ANTHROPIC_API_KEY environment variable is not set.")
        return AnthropicReviewer(api_key=config["anthropic_api_key"], **options)
    if model == "openai":
        if not config.get("openai_api_key"):
            raise ValueError("OPENAI_API_KEY environment variable is not set.")
        return OpenAIReviewer(api_key=config["openai_api_key"], **options)
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")
