"""
Site-specific page adapters.

Each supported chat site is one ProviderAdapter subclass that knows how to
find conversational turns in a page snapshot, extract their text, classify
who wrote them and compute a dedupe key. Adding a site means adding a
subclass and registering its hostnames; shared logic stays untouched.
"""

import copy
import re
from typing import Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, Tag

from ai_footprint.core.ledger import Role

from .events import TurnEvent, UNKNOWN_PROVIDER

MIN_TEXT_LENGTH = 3
KEY_TEXT_LENGTH = 20

# Elements that carry no conversational text
_NOISE_SELECTOR = 'button, svg, .sr-only, [aria-hidden="true"]'

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs and trim."""
    return _WHITESPACE.sub(" ", text or "").strip()


def _key_fragment(text: str) -> str:
    return _WHITESPACE.sub("-", text[:KEY_TEXT_LENGTH])


class ProviderAdapter:
    """Base class for page adapters.

    Subclasses set name and hostnames and implement find_turns() and
    classify_role(); the rest has workable defaults.
    """
    name: str = UNKNOWN_PROVIDER
    hostnames: tuple = ()

    def __init__(self, min_text_length: int = MIN_TEXT_LENGTH):
        self.min_text_length = min_text_length

    def find_turns(self, soup: BeautifulSoup) -> List[Tag]:
        """Elements holding one turn each, in document order."""
        raise NotImplementedError("Override in subclass")

    def classify_role(self, element: Tag) -> Role:
        raise NotImplementedError("Override in subclass")

    def extract_text(self, element: Tag) -> str:
        """Visible text of an element with UI chrome removed."""
        cleaned = copy.copy(element)
        for noise in cleaned.select(_NOISE_SELECTOR):
            noise.decompose()
        return normalize_text(cleaned.get_text())

    def dedupe_key(self, element: Tag, role: Role, index: int) -> str:
        """Key identifying a turn across repeated scans of the same page."""
        text = element.get_text()
        return f"{role.value}-{index}-{_key_fragment(text)}"

    def iter_turns(self, soup: BeautifulSoup) -> Iterator[TurnEvent]:
        """Lazily yield the turns of a page snapshot.

        Turns shorter than min_text_length are skipped. The same turn may be
        yielded again by a later scan; consumers dedupe on the key.
        """
        role_counts: Dict[Role, int] = {}
        for element in self.find_turns(soup):
            role = self.classify_role(element)
            index = role_counts.get(role, 0)
            role_counts[role] = index + 1

            text = self.extract_text(element)
            if len(text) < self.min_text_length:
                continue

            yield TurnEvent(
                text=text,
                role=role,
                dedupe_key=self.dedupe_key(element, role, index),
                provider=self.name
            )


class ChatGPTAdapter(ProviderAdapter):
    """chat.openai.com / chatgpt.com.

    User turns render inside a bubble; assistant output renders as
    paragraphs carrying data-start/data-end offsets.
    """
    name = "ChatGPT"
    hostnames = ("chat.openai.com", "chatgpt.com")

    USER_SELECTOR = ".user-message-bubble-color"
    ASSISTANT_SELECTOR = "p[data-start][data-end]"

    def find_turns(self, soup: BeautifulSoup) -> List[Tag]:
        return soup.select(f"{self.USER_SELECTOR}, {self.ASSISTANT_SELECTOR}")

    def classify_role(self, element: Tag) -> Role:
        if element.has_attr("data-start") and element.has_attr("data-end"):
            return Role.ASSISTANT
        return Role.USER

    def extract_text(self, element: Tag) -> str:
        if self.classify_role(element) == Role.USER:
            text_div = element.select_one(".whitespace-pre-wrap")
            if text_div is not None:
                return normalize_text(text_div.get_text())
        return super().extract_text(element)

    def dedupe_key(self, element: Tag, role: Role, index: int) -> str:
        if role == Role.ASSISTANT:
            return f"assistant-{index}-{element['data-start']}-{element['data-end']}"
        return super().dedupe_key(element, role, index)


class ClaudeAdapter(ProviderAdapter):
    """claude.ai, where every turn carries data-is-author."""
    name = "Claude"
    hostnames = ("claude.ai",)

    def find_turns(self, soup: BeautifulSoup) -> List[Tag]:
        return soup.select("[data-is-author]")

    def classify_role(self, element: Tag) -> Role:
        if element.get("data-is-author") == "true":
            return Role.USER
        return Role.ASSISTANT


class GeminiAdapter(ProviderAdapter):
    """gemini.google.com.

    Assistant output renders in .model-response-text; the submitted prompt
    is echoed in .query-text.
    """
    name = "Gemini"
    hostnames = ("gemini.google.com",)

    USER_SELECTOR = ".query-text"
    ASSISTANT_SELECTOR = ".model-response-text"

    def find_turns(self, soup: BeautifulSoup) -> List[Tag]:
        return soup.select(f"{self.USER_SELECTOR}, {self.ASSISTANT_SELECTOR}")

    def classify_role(self, element: Tag) -> Role:
        if "model-response-text" in element.get("class", []):
            return Role.ASSISTANT
        return Role.USER


class BardAdapter(GeminiAdapter):
    """bard.google.com, the same markup under its earlier name."""
    name = "Bard"
    hostnames = ("bard.google.com",)


ADAPTER_CLASSES = (ChatGPTAdapter, ClaudeAdapter, GeminiAdapter, BardAdapter)

_ADAPTERS_BY_HOST = {
    hostname: adapter_cls
    for adapter_cls in ADAPTER_CLASSES
    for hostname in adapter_cls.hostnames
}


def supported_hosts() -> List[str]:
    return sorted(_ADAPTERS_BY_HOST)


def _normalize_host(hostname: str) -> str:
    host = (hostname or "").strip().lower()
    if host.startswith("www."):
        host = host[len("www."):]
    return host


def get_adapter(hostname: str, min_text_length: int = MIN_TEXT_LENGTH) -> Optional[ProviderAdapter]:
    """Adapter for a page's hostname.

    Returns:
        An adapter instance, or None when the site is not supported
        (nothing should be observed on that page)
    """
    adapter_cls = _ADAPTERS_BY_HOST.get(_normalize_host(hostname))
    if adapter_cls is None:
        return None
    return adapter_cls(min_text_length=min_text_length)


def provider_label(hostname: str) -> str:
    """Display name for a page's hostname, "Unknown" when unsupported."""
    adapter_cls = _ADAPTERS_BY_HOST.get(_normalize_host(hostname))
    return adapter_cls.name if adapter_cls else UNKNOWN_PROVIDER
