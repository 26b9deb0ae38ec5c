import httpx
import pytest

from neptune.models.tools import ToolContext
from neptune.tools.website_tools import (
    AnalyzeWebsiteArgs,
    analyze_company_website,
    company_name_from_url,
    normalize_url,
    summarize_html,
)

CONTEXT = ToolContext(tenant_id="tenant-a", user_id="user-1")

PAGE = """
<html>
  <head>
    <title>Acme Rockets - Reusable launch for everyone</title>
    <meta name="description" content="Acme builds small reusable rockets.">
  </head>
  <body>
    <h1>Launch   on demand</h1>
    <h2>Payload services</h2>
    <p>Ignored paragraph</p>
    <h3>Ground &amp; range support</h3>
  </body>
</html>
"""


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_normalize_url():
    assert normalize_url(" acme.io ") == "https://acme.io"
    assert normalize_url("http://acme.io/about") == "http://acme.io/about"


def test_company_name_from_url():
    assert company_name_from_url("https://www.blue-harbor.com/pricing") == "Blue Harbor"


def test_summarize_html_collects_title_description_and_headings():
    summary = summarize_html(PAGE)
    assert summary.title == "Acme Rockets - Reusable launch for everyone"
    assert summary.description == "Acme builds small reusable rockets."
    assert summary.headings == ["Launch on demand", "Payload services", "Ground & range support"]


def test_summarize_html_limits_headings():
    html = "".join(f"<h2>Heading {i}</h2>" for i in range(30))
    assert len(summarize_html(html).headings) == 10
    assert len(summarize_html(html, detailed=True).headings) == 20


@pytest.mark.asyncio
async def test_analyze_website_success():
    seen = []

    def handler(request):
        seen.append((request.url.scheme, request.url.host))
        return httpx.Response(200, text=PAGE)

    async with mock_client(handler) as client:
        result = await analyze_company_website(AnalyzeWebsiteArgs(url="acme.io"), CONTEXT, client=client)

    assert seen == [("https", "acme.io")]
    assert result.success
    assert result.data["companyName"] == "Acme Rockets"
    assert result.data["keyOfferings"][0] == "Launch on demand"
    assert result.data["analysisType"] == "quick"


@pytest.mark.asyncio
async def test_analyze_website_falls_back_to_domain_name():
    async with mock_client(lambda request: httpx.Response(200, text="<p>no title</p>")) as client:
        result = await analyze_company_website(
            AnalyzeWebsiteArgs(url="https://www.blue-harbor.com", detailed=True), CONTEXT, client=client
        )
    assert result.data["companyName"] == "Blue Harbor"
    assert result.data["analysisType"] == "detailed"


@pytest.mark.asyncio
async def test_fetch_failure_asks_user_for_description():
    async with mock_client(lambda request: httpx.Response(503)) as client:
        result = await analyze_company_website(AnalyzeWebsiteArgs(url="https://acme.io"), CONTEXT, client=client)

    assert not result.success
    assert result.error == "Website fetch failed"
    assert "acme.io" in result.message


@pytest.mark.asyncio
async def test_invalid_url_is_rejected_without_fetch():
    def handler(request):
        raise AssertionError("should not fetch")

    async with mock_client(handler) as client:
        result = await analyze_company_website(AnalyzeWebsiteArgs(url="localhost"), CONTEXT, client=client)
    assert not result.success
    assert result.error == "Invalid URL format"
