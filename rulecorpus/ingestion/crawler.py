"""
Responsible for "discovery" around the fetcher:
- Warm the session on the referer page so the site issues its cookies
- Parse rule-part PDF links out of an index page into manifest entries

Kept apart from the fetcher so link parsing can be unit-tested on plain HTML.
"""

import logging
import re
from typing import Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from rulecorpus.common.errors import NetworkError
from rulecorpus.common.manifest import ManifestEntry

logger = logging.getLogger("ingestion")

# .../Part_091_Consolidation.pdf -> "091"
PART_LINK_RE = re.compile(r"Part_(\d{1,3})(?:_[A-Za-z]+)?\.pdf$", re.IGNORECASE)


async def fetch_html(client: httpx.AsyncClient, url: str) -> str:
    """
    Download the HTML for the given URL through the shared session.
    Cookies set by the page stay in the session for the PDF requests.
    """
    try:
        r = await client.get(url, headers={"Accept": "text/html,application/xhtml+xml,*/*;q=0.8"})
        r.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise NetworkError(f"{type(e).__name__}: {e}") from e
    return r.text


async def warm_session(client: httpx.AsyncClient, url: str) -> Optional[str]:
    """
    Visit the referer page once before a batch. Returns its HTML, or None
    when the page could not be fetched (the batch still proceeds; the
    fetcher's retry covers cookie-less first responses).
    """
    try:
        html = await fetch_html(client, url)
    except NetworkError as e:
        logger.warning("Session warm-up failed for %s: %s", url, e)
        return None
    logger.info("Session warmed on %s cookies=%s", url, len(client.cookies))
    return html


def parse_pdf_links(html: str, base_url: str) -> List[ManifestEntry]:
    """
    Parse every <a href="...Part_NNN....pdf"> link into a ManifestEntry.
    The first link seen for an identifier wins; the result is in page order.
    """
    soup = BeautifulSoup(html, "html.parser")
    found: Dict[str, ManifestEntry] = {}

    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        path = href.split("?", 1)[0].split("#", 1)[0]
        m = PART_LINK_RE.search(path)
        if not m:
            continue
        identifier = m.group(1).zfill(3)
        if identifier in found:
            continue

        # Human-friendly name from the anchor text, fallback if blank
        name = " ".join(a.get_text(" ", strip=True).split()) or f"Part {identifier}"
        abs_url = str(httpx.URL(base_url).join(href))

        found[identifier] = ManifestEntry(identifier=identifier, display_name=name, source_url=abs_url)

    logger.info("Parsed %s rule-part links from %s", len(found), base_url)
    return list(found.values())


def merge_entries(existing: List[ManifestEntry], discovered: List[ManifestEntry]) -> List[ManifestEntry]:
    """
    Add newly discovered parts to an existing manifest.
    Existing entries win: names and path overrides edited by hand are kept.
    """
    merged = {e.identifier: e for e in existing}
    added = 0
    for e in discovered:
        if e.identifier not in merged:
            merged[e.identifier] = e
            added += 1
    logger.info("Manifest merge: %s existing, %s added", len(existing), added)
    return sorted(merged.values(), key=lambda e: e.sort_key)
