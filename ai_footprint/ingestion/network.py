"""
Network observation helpers.

Maps API hostnames to tracked providers and estimates the tokens of an
outgoing request payload when the response carries no usage data.
"""

import json
import logging
from typing import Any, Dict, Iterable, Optional

from ai_footprint.core.token_counter import estimate_tokens_quick

logger = logging.getLogger(__name__)

# Only these hosts are tracked; requests to anything else are ignored
API_ENDPOINTS: Dict[str, str] = {
    "api.openai.com": "OpenAI",
    "api.anthropic.com": "Anthropic",
    "api.cohere.ai": "Cohere",
    "api.together.xyz": "Together",
    "api.replicate.com": "Replicate",
}

DEFAULT_COMPLETION_TOKENS = 150
FALLBACK_REQUEST_TOKENS = 100


def get_provider(hostname: Optional[str]) -> Optional[str]:
    """Provider name for an API hostname, None when it is not tracked."""
    if not hostname:
        return None
    return API_ENDPOINTS.get(hostname.strip().lower())


def _content_text(content: Any) -> str:
    """Text of a message content field (plain string or list of parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return " ".join(parts)
    return ""


def _messages_tokens(messages: Any) -> int:
    if not isinstance(messages, list):
        return 0
    return sum(estimate_tokens_quick(_content_text(msg.get("content"))) for msg in messages)


def _prompt_and_budget(data: Dict[str, Any], text_tokens: int, budget_keys: Iterable[str]) -> int:
    tokens = text_tokens
    if data.get("prompt"):
        tokens += estimate_tokens_quick(data["prompt"])
    for key in budget_keys:
        if data.get(key):
            return tokens + int(data[key])
    return tokens + DEFAULT_COMPLETION_TOKENS


def _estimate_openai(data: Dict[str, Any]) -> int:
    return _prompt_and_budget(data, _messages_tokens(data.get("messages")), ("max_tokens",))


def _estimate_anthropic(data: Dict[str, Any]) -> int:
    return _prompt_and_budget(
        data,
        _messages_tokens(data.get("messages")),
        ("max_tokens_to_sample", "max_tokens")
    )


def _estimate_cohere(data: Dict[str, Any]) -> int:
    text_tokens = estimate_tokens_quick(data["message"]) if data.get("message") else 0
    return _prompt_and_budget(data, text_tokens, ("max_tokens",))


def _estimate_generic(data: Any) -> int:
    return estimate_tokens_quick(json.dumps(data)) + DEFAULT_COMPLETION_TOKENS


_ESTIMATORS = {
    "OpenAI": _estimate_openai,
    "Anthropic": _estimate_anthropic,
    "Cohere": _estimate_cohere,
}


def estimate_request_tokens(payload: Optional[Dict[str, Any]], provider: str) -> int:
    """Estimate prompt plus expected completion tokens for an API request.

    Args:
        payload: Decoded JSON request body
        provider: Provider name from API_ENDPOINTS

    Returns:
        Estimated tokens, at least 1. A missing payload counts as
        FALLBACK_REQUEST_TOKENS, as does one that cannot be read.
    """
    if not payload:
        return FALLBACK_REQUEST_TOKENS

    estimator = _ESTIMATORS.get(provider, _estimate_generic)
    try:
        tokens = estimator(payload)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning("Could not estimate %s request tokens: %s", provider, e)
        tokens = FALLBACK_REQUEST_TOKENS

    return max(tokens, 1)
