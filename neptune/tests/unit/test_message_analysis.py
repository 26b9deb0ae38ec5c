import json

import pytest

from neptune.services.message_analysis import (
    detect_website_reference,
    forced_tool_choice,
    is_complex_question,
    website_directive,
)


@pytest.mark.parametrize(
    "message",
    [
        "What strategy should we use for Q3?",
        "Can you compare HubSpot and Salesforce for us",
        "What are the pros and cons of hiring a contractor",
        "Why did our conversion rate drop",
        "Is it cheaper? Is it faster?",
        "I keep going back and forth on whether we should keep our current CRM setup or move everything over "
        "to a new tool instead of the spreadsheet we use",
    ],
)
def test_complex_questions(message):
    assert is_complex_question(message)


@pytest.mark.parametrize("message", ["Hi there", "Show my leads", "What time is my next meeting?"])
def test_simple_questions(message):
    assert not is_complex_question(message)


@pytest.mark.parametrize(
    "message,expected",
    [
        ("Check out https://example.com please", "https://example.com"),
        ("Look at https://example.com/about.", "https://example.com/about"),
        ("our site is acme.io", "https://acme.io"),
        ("visit www.acme.co/pricing, thanks", "https://www.acme.co/pricing"),
        ("What about Stripe.com?", "https://stripe.com"),
    ],
)
def test_detects_websites(message, expected):
    assert detect_website_reference(message) == expected


@pytest.mark.parametrize(
    "message",
    [
        "email me at jane@acme.com",
        "my address is someone@gmail.com",
        "I use gmail.com for everything",
        "see the file report.pdf",
        "we grew 3.5 percent",
        "hello world",
        "e.g. the usual",
    ],
)
def test_ignores_non_websites(message):
    assert detect_website_reference(message) is None


def test_explicit_url_wins_over_bare_domain():
    assert detect_website_reference("acme.io or https://other.com") == "https://other.com"


def test_directive_names_tool_and_exact_arguments():
    directive = website_directive("https://example.com")
    assert "analyze_company_website" in directive
    assert json.dumps({"url": "https://example.com", "detailed": False}) in directive


def test_forced_tool_choice_shape():
    assert forced_tool_choice() == {"type": "function", "function": {"name": "analyze_company_website"}}
