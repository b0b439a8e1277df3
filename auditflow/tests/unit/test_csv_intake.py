from __future__ import annotations

import pytest

from auditflow.core.errors import ValidationError
from auditflow.services.csv_intake import Prospect, normalize_url, parse_prospects


def test_parse_prospects_normalizes_urls_and_keeps_emails() -> None:
    csv_text = "url,email\nexample.com,a@example.com\nhttp://test.com,\n"
    prospects = parse_prospects(csv_text)
    assert prospects == [
        Prospect(url="https://example.com", email="a@example.com"),
        Prospect(url="http://test.com", email="contact@http://test.com"),
    ]


def test_parse_prospects_defaults_email_from_raw_url() -> None:
    prospects = parse_prospects("url,company\nacme.io,Acme")
    assert prospects == [Prospect(url="https://acme.io", email="contact@acme.io")]


def test_parse_prospects_trims_headers_and_carriage_returns() -> None:
    csv_text = " url , email \r\nexample.com , a@example.com\r\ndemo.org,b@demo.org\r\n"
    prospects = parse_prospects(csv_text)
    assert [prospect.url for prospect in prospects] == ["https://example.com", "https://demo.org"]
    assert prospects[0].email == "a@example.com"


def test_parse_prospects_skips_rows_without_url() -> None:
    prospects = parse_prospects("url,email\n,orphan@example.com\nsite.com,x@site.com")
    assert [prospect.url for prospect in prospects] == ["https://site.com"]


def test_parse_prospects_caps_rows() -> None:
    rows = "\n".join(f"site{index}.com,owner{index}@example.com" for index in range(60))
    prospects = parse_prospects(f"url,email\n{rows}")
    assert len(prospects) == 50
    assert prospects[-1].url == "https://site49.com"


def test_parse_prospects_cap_counts_rows_not_prospects() -> None:
    # Empty-url rows still consume a slot within the first max_rows data rows.
    rows = ["site0.com"] + [""] * 2 + [f"site{index}.com" for index in range(1, 10)]
    prospects = parse_prospects("url\n" + "\n".join(rows), max_rows=5)
    assert [prospect.url for prospect in prospects] == [
        "https://site0.com",
        "https://site1.com",
        "https://site2.com",
    ]


def test_parse_prospects_rejects_short_payload() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_prospects("url\na.b")
    assert excinfo.value.message == "CSV too short"
    assert excinfo.value.errors[0]["loc"] == ["csvData"]


def test_parse_prospects_requires_url_column() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_prospects("website,email\nexample.com,a@example.com")
    assert excinfo.value.message == 'Column "url" missing from CSV'


def test_parse_prospects_header_only_yields_nothing() -> None:
    assert parse_prospects("url,email,company") == []


def test_normalize_url_keeps_http_prefixes() -> None:
    assert normalize_url("https://a.com") == "https://a.com"
    assert normalize_url("httpbin.org") == "httpbin.org"
    assert normalize_url("a.com") == "https://a.com"
