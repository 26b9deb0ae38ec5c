"""Heuristics applied to the raw user message before the first model round."""

import json
import re
from typing import Optional
from urllib.parse import urlparse

from neptune.tools.website_tools import ANALYZE_WEBSITE_TOOL

COMPLEX_INDICATORS = [
    "strategy",
    "strategic",
    "plan",
    "planning",
    "compare",
    "comparison",
    "versus",
    "vs",
    "difference between",
    "analyze",
    "analysis",
    "evaluate",
    "assessment",
    "recommend",
    "recommendation",
    "suggest",
    "advice",
    "best approach",
    "best way",
    "how should",
    "what should",
    "pros and cons",
    "advantages",
    "disadvantages",
    "why",
    "explain why",
    "reason",
    "reasoning",
    "complex",
    "complicated",
    "multiple",
    "several",
]
_COMPLEX_RE = re.compile(r"\b(?:" + "|".join(re.escape(i) for i in COMPLEX_INDICATORS) + r")", re.IGNORECASE)
_COMPARISON_RE = re.compile(r"\b(?:vs|versus|compared to|better than|worse than|instead of)\b", re.IGNORECASE)
LONG_QUESTION_LENGTH = 100


def is_complex_question(message: str) -> bool:
    """True when the message asks for analysis, comparison or advice."""
    if _COMPLEX_RE.search(message):
        return True
    if message.count("?") > 1:
        return True
    return len(message) > LONG_QUESTION_LENGTH and bool(_COMPARISON_RE.search(message))


FREE_EMAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "msn.com",
        "icloud.com",
        "me.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "mail.com",
        "gmx.com",
        "yandex.com",
        "zoho.com",
    }
)

ALLOWED_TLDS = frozenset(
    {
        "com", "org", "net", "io", "ai", "co", "app", "dev", "tech", "so", "xyz", "biz", "info",
        "us", "uk", "ca", "au", "de", "fr", "es", "it", "nl", "se", "ch", "in", "jp", "eu", "me",
        "agency", "studio", "store", "shop", "cloud", "digital", "design", "health", "finance",
    }
)  # fmt: skip

_EXPLICIT_URL_RE = re.compile(r"https?://[^\s<>\"'()\[\]]+", re.IGNORECASE)
# Bare domains; the lookbehind keeps email addresses and path fragments out
_BARE_DOMAIN_RE = re.compile(
    r"(?<![@\w.\-/])((?:www\.)?(?:[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?\.)+[a-z]{2,24})(/[^\s<>\"'()\[\]]*)?",
    re.IGNORECASE,
)
_TRAILING_PUNCT = ".,;:!?"


def _host_allowed(host: str) -> bool:
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    if "." not in host or host in FREE_EMAIL_DOMAINS:
        return False
    return host.rsplit(".", 1)[-1] in ALLOWED_TLDS


def detect_website_reference(text: str) -> Optional[str]:
    """Return the first website referenced in ``text`` as an absolute URL.

    Explicit ``http(s)://`` links win over bare domains. Free-email domains
    and unknown top-level domains are ignored.
    """
    for match in _EXPLICIT_URL_RE.finditer(text):
        url = match.group(0).rstrip(_TRAILING_PUNCT)
        host = urlparse(url).hostname
        if host and _host_allowed(host):
            return url

    for match in _BARE_DOMAIN_RE.finditer(text):
        host = match.group(1)
        if _host_allowed(host):
            path = (match.group(2) or "").rstrip(_TRAILING_PUNCT)
            return f"https://{host.lower()}{path}"
    return None


def website_arguments(url: str) -> str:
    """JSON arguments for the website tool, as the model is told to send them."""
    return json.dumps({"url": url, "detailed": False})


def website_directive(url: str) -> str:
    """Instruction appended to the model-facing copy of the user message."""
    args = website_arguments(url)
    return (
        f"\n\n[REQUIRED ACTION: The user referenced the website {url}. "
        f"Call the {ANALYZE_WEBSITE_TOOL} tool FIRST with exactly these arguments: {args}. "
        "Do not write any text before calling it and do not ask for permission.]"
    )


def forced_tool_choice() -> dict:
    """Structured tool choice pinning the first round to the website tool."""
    return {"type": "function", "function": {"name": ANALYZE_WEBSITE_TOOL}}
