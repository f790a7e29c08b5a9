"""
Tracked OpenAI client wrapper.

Records the footprint of chat completions without modifying behavior.
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from openai import OpenAI

from ..core.ledger import Role
from ..core.token_counter import TokenUsage
from ..ingestion.events import PREVIEW_LENGTH, TrackTokensPayload
from ..ingestion.network import estimate_request_tokens, get_provider

logger = logging.getLogger(__name__)

Submit = Callable[[TrackTokensPayload], Any]


def _last_user_text(messages: List[Dict[str, Any]]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user" and isinstance(message.get("content"), str):
            return message["content"]
    return ""


class TrackedOpenAI:
    """OpenAI client wrapper that submits each completion to the ledger.

    Requests are only tracked when the client talks to a known API host
    (see ai_footprint.ingestion.network.API_ENDPOINTS). API errors propagate
    unchanged; tracking failures are logged and never break the call.
    """

    def __init__(self, model: str, submit: Submit, client: Optional[OpenAI] = None, **client_kwargs: Any):
        """Initialize tracked OpenAI client.

        Args:
            model: OpenAI model name (required)
            submit: Receives one TrackTokensPayload per turn, typically
                a function that wraps it in a trackTokens command
            client: Existing OpenAI client, created from client_kwargs if omitted
            **client_kwargs: Passed to OpenAI() when creating a client

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.client = client or OpenAI(**client_kwargs)
        self._submit = submit

        hostname = urlparse(str(self.client.base_url)).hostname
        self.provider = get_provider(hostname)
        if self.provider is None:
            logger.info("Not tracking requests to untracked host %s", hostname)

    @property
    def tracked(self) -> bool:
        return self.provider is not None

    def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ):
        """Create chat completion and record its footprint.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        request: Dict[str, Any] = {"model": self.model, "messages": messages, **kwargs}
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens

        response = self.client.chat.completions.create(**request)

        if self.tracked:
            self._record(request, response)

        return response

    def _usage(self, request: Dict[str, Any], response) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is not None:
            return TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens
            )
        # Without reported usage, attribute the whole estimate to the prompt
        return TokenUsage(
            prompt_tokens=estimate_request_tokens(request, self.provider),
            completion_tokens=0
        )

    def _record(self, request: Dict[str, Any], response) -> None:
        try:
            usage = self._usage(request, response)
            preview = _last_user_text(request["messages"])[:PREVIEW_LENGTH]
            self._submit(TrackTokensPayload(
                tokens=usage.prompt_tokens,
                provider=self.provider,
                role=Role.USER,
                message_preview=preview
            ))
            self._submit(TrackTokensPayload(
                tokens=usage.completion_tokens,
                provider=self.provider,
                role=Role.ASSISTANT
            ))
        except Exception:
            logger.exception("Failed to record completion footprint")
