import dataclasses

import httpx
import pytest

from rulecorpus.ingestion import fetcher
from rulecorpus.ingestion.fetcher import (
    ACCEPT_FIRST,
    ACCEPT_RETRY,
    download_pdf,
    fetch_pdf,
    new_session,
)

PDF_URL = "https://rules.example/assets/Part_091.pdf"
REFERER = "https://rules.example/rules/rule-part/"


def pdf_response(body: bytes, content_type: str = "application/pdf", **kwargs) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": content_type}, content=body, **kwargs)


class Recorder:
    """MockTransport handler that serves canned responses in order and keeps every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        # fresh copy per request
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


@pytest.fixture
def valid_pdf(make_pdf):
    return make_pdf(["Rule 91.101"], pad_to=12000)


@pytest.mark.asyncio
async def test_valid_pdf_accepted_first_try(valid_pdf):
    handler = Recorder(pdf_response(valid_pdf))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert result.ok
    assert result.mime_type == "application/pdf"
    assert result.byte_size == len(valid_pdf)
    assert result.attempts == 1
    assert len(handler.requests) == 1
    req = handler.requests[0]
    assert req.headers["Accept"] == ACCEPT_FIRST
    assert req.headers["Referer"] == REFERER
    assert "Mozilla/5.0" in req.headers["User-Agent"]
    print("\n[TEST] fetch_pdf accepted a valid PDF ✅")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content_type, body_kind",
    [
        ("text/html", "valid"),        # wrong mime
        ("application/pdf", "small"),  # undersized
        ("application/pdf", "html"),   # labelled PDF, actually an interstitial page
    ],
)
async def test_rejected_payload_retried_exactly_once(valid_pdf, content_type, body_kind):
    bodies = {
        "valid": valid_pdf,
        "small": valid_pdf[:5000],
        "html": b"<html>" + b"x" * 20000 + b"</html>",
    }
    handler = Recorder(pdf_response(bodies[body_kind], content_type))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert not result.ok
    assert result.status == "fail"
    assert result.attempts == 2
    assert len(handler.requests) == 2
    assert handler.requests[0].headers["Accept"] == ACCEPT_FIRST
    assert handler.requests[1].headers["Accept"] == ACCEPT_RETRY
    assert result.reason.startswith("Unexpected response (status 200")


@pytest.mark.asyncio
async def test_second_attempt_can_succeed(valid_pdf):
    handler = Recorder(
        pdf_response(b"<html>challenge</html>", "application/pdf"),
        pdf_response(valid_pdf),
    )
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert result.ok
    assert result.attempts == 2
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_cookies_reused_across_attempts_and_documents(valid_pdf):
    seen_cookies = []

    def handler(request: httpx.Request) -> httpx.Response:
        cookie = request.headers.get("cookie", "")
        seen_cookies.append(cookie)
        if "session=abc" not in cookie:
            # first contact: hand out the cookie along with an interstitial page
            return httpx.Response(
                200,
                headers={"content-type": "text/html", "set-cookie": "session=abc; Path=/"},
                content=b"<html>checking your browser</html>",
            )
        return pdf_response(valid_pdf)

    async with new_session(transport=httpx.MockTransport(handler)) as client:
        first = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)
        second = await fetch_pdf(client, "https://rules.example/assets/Part_001.pdf", referer=REFERER, retry_delay=0)

    assert first.ok and first.attempts == 2
    assert second.ok and second.attempts == 1
    assert seen_cookies[0] == ""
    assert all("session=abc" in c for c in seen_cookies[1:])


@pytest.mark.asyncio
async def test_network_error_becomes_failure():
    handler = Recorder(httpx.ConnectError("connection refused"))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert not result.ok
    assert result.attempts == 2
    assert result.mime_type == ""
    assert result.byte_size == 0
    assert "ConnectError" in result.reason


@pytest.mark.asyncio
async def test_network_error_then_success(valid_pdf):
    handler = Recorder(httpx.ReadTimeout("timed out"), pdf_response(valid_pdf))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert result.ok
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_too_many_redirects_is_distinct_and_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(302, headers={"location": f"/loop/{len(calls)}"})

    async with new_session(transport=httpx.MockTransport(handler), max_redirects=8) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert not result.ok
    assert "Too many redirects" in result.reason
    assert result.attempts == 1
    # initial request plus eight followed hops
    assert len(calls) == 9


@pytest.mark.asyncio
async def test_redirect_followed_and_final_url_recorded(valid_pdf):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/assets/Part_091.pdf":
            return httpx.Response(301, headers={"location": "https://cdn.rules.example/files/Part_091.pdf"})
        return pdf_response(valid_pdf)

    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER, retry_delay=0)

    assert result.ok
    assert result.final_url == "https://cdn.rules.example/files/Part_091.pdf"


@pytest.mark.asyncio
async def test_download_writes_atomically(tmp_path, valid_pdf):
    dest = tmp_path / "download" / "car" / "Part_091.pdf"
    handler = Recorder(pdf_response(valid_pdf))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await download_pdf(client, PDF_URL, dest, referer=REFERER, retry_delay=0)

    assert result.ok
    assert dest.read_bytes() == valid_pdf
    assert not (dest.parent / "Part_091.pdf.tmp").exists()


@pytest.mark.asyncio
async def test_failed_download_keeps_previous_file(tmp_path):
    dest = tmp_path / "Part_091.pdf"
    dest.write_bytes(b"%PDF-previous")
    handler = Recorder(pdf_response(b"<html>nope</html>", "text/html"))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await download_pdf(client, PDF_URL, dest, referer=REFERER, retry_delay=0)

    assert not result.ok
    assert dest.read_bytes() == b"%PDF-previous"
    assert list(tmp_path.iterdir()) == [dest]


@pytest.mark.asyncio
async def test_unparsable_url_is_a_failure_not_an_exception():
    handler = Recorder(pdf_response(b"unused"))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, "http://[::1/x.pdf", referer=REFERER, retry_delay=0)

    assert not result.ok
    assert result.attempts == 1
    assert result.reason.startswith("Invalid URL")
    assert handler.requests == []


@pytest.mark.asyncio
async def test_default_retry_delay_comes_from_settings(monkeypatch, valid_pdf):
    waits = []
    real_wait_fixed = fetcher.wait_fixed

    def recording_wait_fixed(seconds):
        waits.append(seconds)
        return real_wait_fixed(0)

    monkeypatch.setattr(fetcher, "settings", dataclasses.replace(fetcher.settings, retry_delay_ms=250))
    monkeypatch.setattr(fetcher, "wait_fixed", recording_wait_fixed)

    handler = Recorder(pdf_response(b"<html>challenge</html>", "text/html"), pdf_response(valid_pdf))
    async with new_session(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_pdf(client, PDF_URL, referer=REFERER)

    assert result.ok and result.attempts == 2
    assert waits == [0.25]
