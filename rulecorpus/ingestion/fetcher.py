"""
Responsible for "fetching" one document:
- GET the URL through the shared session (cookies, browser UA, referer)
- Validate that what came back really is a PDF (content type, size, %PDF- signature)
- Retry exactly once, after a short pause, with a stricter Accept header
- Write accepted payloads via a temp file + rename

Government sites in front of anti-bot filters often answer the first request
with an HTML interstitial (sometimes labelled application/pdf) and only serve
the document once the session carries their cookies. Every failure mode ends
up as a FetchResult with status "fail"; nothing network-related escapes.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from rulecorpus.common.config import settings
from rulecorpus.common.errors import (
    ContentValidationError,
    FetchError,
    InvalidURLError,
    NetworkError,
    TooManyRedirectsError,
)
from rulecorpus.common.storage import write_atomic
from .models import PDF_MIME_TYPES, PDF_SIGNATURE, FetchResult

logger = logging.getLogger("ingestion")

ACCEPT_FIRST = "application/pdf,application/octet-stream;q=0.9,*/*;q=0.8"
ACCEPT_RETRY = "application/pdf"
MAX_ATTEMPTS = 2


def new_session(
    *,
    user_agent: Optional[str] = None,
    timeout: Optional[float] = None,
    max_redirects: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build the session object for one run.
    The AsyncClient owns the cookie jar: every Set-Cookie seen on any response
    (redirect hops included) is replayed on later requests of the same run.
    """
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent or settings.user_agent},
        follow_redirects=True,
        max_redirects=settings.max_redirects if max_redirects is None else max_redirects,
        timeout=timeout or settings.fetch_timeout,
        transport=transport,
    )


def mime_of(response: httpx.Response) -> str:
    """'application/pdf; charset=binary' -> 'application/pdf'"""
    return response.headers.get("content-type", "").split(";")[0].strip().lower()


def inspect_response(response: httpx.Response, *, min_bytes: int, attempts: int = 1) -> FetchResult:
    """
    Apply the triple PDF check to a response.
    All three must hold: PDF content type, at least min_bytes, %PDF- signature.
    """
    body = response.content
    mime = mime_of(response)

    problems = []
    if mime not in PDF_MIME_TYPES:
        problems.append(f"type {mime or 'unknown'}")
    if len(body) < min_bytes:
        problems.append(f"size {len(body)} < {min_bytes}")
    if not body.startswith(PDF_SIGNATURE):
        problems.append("missing %PDF- signature")

    reason = None
    if problems:
        reason = f"Unexpected response (status {response.status_code}, {', '.join(problems)})"

    return FetchResult(
        status="fail" if problems else "ok",
        mime_type=mime,
        byte_size=len(body),
        final_url=str(response.url),
        body=body,
        status_code=response.status_code,
        attempts=attempts,
        reason=reason,
    )


async def _get(client: httpx.AsyncClient, url: str, *, referer: str, accept: str) -> httpx.Response:
    """One GET, with httpx errors translated into pipeline errors."""
    try:
        return await client.get(url, headers={"Referer": referer, "Accept": accept})
    except httpx.TooManyRedirects as e:
        raise TooManyRedirectsError(f"Too many redirects fetching {url}") from e
    except httpx.InvalidURL as e:
        raise InvalidURLError(f"Invalid URL {url!r}: {e}") from e
    except httpx.HTTPError as e:
        raise NetworkError(f"{type(e).__name__}: {e}") from e


async def fetch_pdf(
    client: httpx.AsyncClient,
    url: str,
    *,
    referer: Optional[str] = None,
    retry_delay: Optional[float] = None,
    min_bytes: Optional[int] = None,
) -> FetchResult:
    """
    Fetch url and return a validated FetchResult.

    Attempt 1 uses a browser-like Accept header. A rejected payload or a
    network error waits retry_delay seconds and tries once more with
    Accept: application/pdf. Too many redirects and an unparsable URL are final immediately.
    """
    referer = referer or settings.referer
    delay = settings.retry_delay_ms / 1000 if retry_delay is None else retry_delay
    min_bytes = settings.min_pdf_bytes if min_bytes is None else min_bytes

    attempts = 0
    result: Optional[FetchResult] = None
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_fixed(delay),
            retry=retry_if_exception_type((NetworkError, ContentValidationError)),
            reraise=True,
        ):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                accept = ACCEPT_FIRST if attempts == 1 else ACCEPT_RETRY
                if attempts > 1:
                    logger.info("Retrying %s (attempt %s/%s, Accept: %s)", url, attempts, MAX_ATTEMPTS, accept)

                response = await _get(client, url, referer=referer, accept=accept)
                result = inspect_response(response, min_bytes=min_bytes, attempts=attempts)
                if not result.ok:
                    raise ContentValidationError(result.reason or "rejected", result)
    except ContentValidationError as e:
        return e.result
    except FetchError as e:
        return FetchResult(
            status="fail",
            mime_type="",
            byte_size=0,
            final_url=url,
            attempts=attempts,
            reason=str(e),
        )

    return result


async def download_pdf(
    client: httpx.AsyncClient,
    url: str,
    dest_path: Union[str, Path],
    **fetch_kwargs,
) -> FetchResult:
    """
    Fetch url and, when it validates, atomically place it at dest_path.
    A failed fetch leaves any previous file at dest_path untouched.
    """
    result = await fetch_pdf(client, url, **fetch_kwargs)
    if result.ok:
        write_atomic(dest_path, result.body)
    return result
