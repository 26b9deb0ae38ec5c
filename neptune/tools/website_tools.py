"""Website analysis tool."""

import logging
import re
from html.parser import HTMLParser
from typing import List, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field

from neptune.models.tools import ToolContext, ToolResult

logger = logging.getLogger(__name__)

ANALYZE_WEBSITE_TOOL = "analyze_company_website"
ANALYZE_WEBSITE_DESCRIPTION = (
    "Analyze a company website to extract the company name, what it does and its key offerings. "
    "When the user's message contains any website URL or domain you MUST call this tool first, "
    "before writing any text response."
)

FETCH_TIMEOUT = 15.0
MAX_HEADINGS = 10
USER_AGENT = "Mozilla/5.0 (compatible; NeptuneBot/1.0)"


class AnalyzeWebsiteArgs(BaseModel):
    url: str = Field(..., min_length=1, description="The website URL to analyze (must start with http:// or https://)")
    detailed: bool = Field(
        False, description="If true, collects more headings from the page. Default is false for quick analysis."
    )


class _PageSummaryParser(HTMLParser):
    """Collects <title>, meta description and h1-h3 text."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.title = ""
        self.description: Optional[str] = None
        self.headings: List[str] = []
        self._current: Optional[str] = None
        self._buffer: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "meta":
            attr_map = {k.lower(): v for k, v in attrs if v is not None}
            name = (attr_map.get("name") or attr_map.get("property") or "").lower()
            if name in ("description", "og:description") and not self.description:
                self.description = attr_map.get("content", "").strip() or None
        elif tag in ("title", "h1", "h2", "h3"):
            self._current = tag
            self._buffer = []

    def handle_endtag(self, tag):
        if tag != self._current:
            return
        text = re.sub(r"\s+", " ", "".join(self._buffer)).strip()
        if text:
            if tag == "title":
                self.title = self.title or text
            else:
                self.headings.append(text)
        self._current = None

    def handle_data(self, data):
        if self._current:
            self._buffer.append(data)


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


def company_name_from_url(url: str) -> str:
    host = urlparse(url).hostname or url
    if host.startswith("www."):
        host = host[4:]
    label = host.split(".")[0]
    return " ".join(part.capitalize() for part in label.split("-") if part)


def summarize_html(html: str, detailed: bool = False) -> _PageSummaryParser:
    parser = _PageSummaryParser()
    parser.feed(html)
    parser.close()
    limit = MAX_HEADINGS * 2 if detailed else MAX_HEADINGS
    parser.headings = parser.headings[:limit]
    return parser


async def analyze_company_website(
    args: AnalyzeWebsiteArgs, context: ToolContext, client: Optional[httpx.AsyncClient] = None
) -> ToolResult:
    """Fetch a website and summarize what the company does."""
    url = normalize_url(args.url)
    parsed = urlparse(url)
    if not parsed.hostname or "." not in parsed.hostname:
        return ToolResult.failure(
            "That doesn't look like a valid website URL. Please check and try again.", error="Invalid URL format"
        )

    domain = parsed.hostname[4:] if parsed.hostname.startswith("www.") else parsed.hostname
    logger.info(f"Analyzing website {url} for tenant {context.tenant_id}")

    try:
        if client is None:
            async with httpx.AsyncClient(
                timeout=FETCH_TIMEOUT, follow_redirects=True, headers={"User-Agent": USER_AGENT}
            ) as owned_client:
                response = await owned_client.get(url)
        else:
            response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Website fetch failed for {url}: {e}")
        return ToolResult(
            success=False,
            message=(
                f"I couldn't access {domain} automatically. Tell me in a few sentences what "
                f"{domain} does, or share a direct link to its About page."
            ),
            error="Website fetch failed",
            data={"websiteUrl": url},
        )

    summary = summarize_html(response.text, detailed=args.detailed)
    company_name = summary.title.split("|")[0].split(" - ")[0].strip() or company_name_from_url(url)

    return ToolResult(
        success=True,
        message=f"I've analyzed {company_name}'s website.",
        data={
            "companyName": company_name,
            "description": summary.description,
            "keyOfferings": summary.headings,
            "websiteUrl": url,
            "analysisType": "detailed" if args.detailed else "quick",
        },
    )
