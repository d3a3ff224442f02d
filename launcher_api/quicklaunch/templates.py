from __future__ import annotations

import re
from typing import Callable, Optional
from urllib.parse import quote, urlparse

import httpx

from .logging_utils import setup_launcher_logger

logger = setup_launcher_logger("templates")

PLACEHOLDER = "{}"
WIKI_PATTERN = re.compile(r"wiki|fandom", re.IGNORECASE)
DOMAIN_PATTERN = re.compile(r"https?://(?:[\w-]+\.)*([\w-]+)\.(?:wiki|fandom)(?:\.\w+)?(?:/\{\}|/)?")
SEARCH_FALLBACK = "https://www.google.com/search?q="


def encode_component(value: str) -> str:
    """Percent-encode a single URL component with ``quote``.

    Letters, digits and ``_.-~`` are kept; everything else, spaces included
    (``%20``), is escaped.
    """
    return quote(value, safe="")


def capitalize_underscore_words(value: str) -> str:
    """'breath_of_the_wild' -> 'Breath_Of_The_Wild'"""
    if not value:
        return value
    return "_".join(w[:1].upper() + w[1:] for w in value.split("_"))


def extract_wiki_name(url: str) -> str:
    m = DOMAIN_PATTERN.search(url)
    if m:
        return m.group(1)
    return "wiki"


def is_page_available(url: str, timeout: float = 5.0) -> bool:
    """HEAD the page; only a final 200 counts as available."""
    try:
        response = httpx.head(url, timeout=timeout, follow_redirects=True)
        return response.status_code == 200
    except httpx.HTTPError as e:
        logger.debug(f"Probe failed for {url}: {e}")
        return False


def _base_target(template: str) -> str:
    """Target used when a placeholder template gets no argument."""
    stripped = template.replace(PLACEHOLDER, "")
    try:
        parsed = urlparse(stripped)
        if parsed.scheme and parsed.hostname:
            if "/search" in parsed.path or parsed.query:
                return f"{parsed.scheme}://{parsed.hostname}"
    except ValueError:
        pass
    return stripped.rstrip("/")


class TemplateExpander:
    """Turn a keyword's URL template plus the typed argument into a URL.

    Wiki/fandom templates title-case the argument per underscore-separated
    word and, when the resulting page does not answer a HEAD with 200, fall
    back to a web search for "<wiki> wiki <argument>".
    """

    def __init__(self, probe: Optional[Callable[[str], bool]] = None,
                 probe_enabled: bool = True, timeout: float = 5.0):
        self.probe_enabled = probe_enabled
        self.timeout = timeout
        self._probe = probe or (lambda url: is_page_available(url, timeout=self.timeout))

    def expand(self, template: str, argument: str = "") -> str:
        argument = (argument or "").strip()
        is_wiki = bool(WIKI_PATTERN.search(template))

        if PLACEHOLDER in template:
            url_argument = capitalize_underscore_words(argument.replace(" ", "_")) if is_wiki else argument
            if url_argument:
                target = template.replace(PLACEHOLDER, encode_component(url_argument))
            else:
                target = _base_target(template)
        else:
            target = template

        if is_wiki and argument and self.probe_enabled and not self._probe(target):
            wiki_name = extract_wiki_name(template)
            logger.info(f"Page unavailable, falling back to search: {target}")
            target = SEARCH_FALLBACK + encode_component(f"{wiki_name} wiki {argument}")
        return target

    def is_fallback(self, url: str) -> bool:
        return url.startswith(SEARCH_FALLBACK)
