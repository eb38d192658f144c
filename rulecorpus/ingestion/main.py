"""
Acquisition stage.

Responsibilities:
- Walk the manifest and download every PDF through ONE shared session
- Record a DownloadRecord per entry and a DocumentFetched/DocumentFetchFailed event
- Write the run report (<pdf_dir>/report.json) and log the end-of-run summary

A failed document never stops the batch; only a bad manifest does, and that
is raised before any network traffic.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

import httpx

from rulecorpus.common.config import settings
from rulecorpus.common.events import new_event, new_run_id, publish_event
from rulecorpus.common.manifest import Manifest, ManifestEntry
from rulecorpus.common.models import StageSummary
from rulecorpus.common.storage import write_report
from .crawler import warm_session
from .fetcher import download_pdf, new_session
from .models import DownloadRecord, FetchResult

logger = logging.getLogger("ingestion")


async def download_entry(
    client: httpx.AsyncClient,
    entry: ManifestEntry,
    dest: Path,
    *,
    run_id: str,
    events_path: Optional[str] = None,
    **fetch_kwargs,
) -> DownloadRecord:
    """
    Download one manifest entry to dest and describe the outcome.
    """
    try:
        result = await download_pdf(client, entry.source_url, dest, **fetch_kwargs)
    except OSError as e:
        # fetched fine but could not be written
        logger.exception("Could not write %s", dest)
        result = FetchResult(status="fail", mime_type="", byte_size=0, final_url=entry.source_url, reason=str(e))

    record = DownloadRecord(
        identifier=entry.identifier,
        name=entry.display_name,
        url=entry.source_url,
        ok=result.ok,
        size=result.byte_size,
        mime=result.mime_type,
        path=str(dest),
        final_url=result.final_url,
        attempts=result.attempts,
        error=result.reason,
    )

    if record.ok:
        logger.info("[OK] Part %s -> %s %s bytes saved", record.identifier, record.mime, record.size)
    else:
        logger.warning("[FAIL] Part %s -> %s", record.identifier, record.error)

    publish_event(
        new_event(
            "DocumentFetched" if record.ok else "DocumentFetchFailed",
            payload=record.model_dump(mode="json"),
            correlation_id=run_id,
        ),
        events_path,
    )
    return record


async def acquire(
    manifest: Manifest,
    *,
    pdf_dir: Optional[Union[str, Path]] = None,
    report_path: Optional[Union[str, Path]] = None,
    events_path: Optional[str] = None,
    workers: Optional[int] = None,
    referer: Optional[str] = None,
    warm: Optional[bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    retry_delay: Optional[float] = None,
) -> Tuple[StageSummary, List[DownloadRecord]]:
    """
    Download every manifest entry. Returns the summary and the per-entry
    records in manifest order.

    workers=1 (default) processes entries strictly one after another.
    With 2-4 workers fetches overlap, but they still share the one session;
    all cookie updates happen on this event loop, one response at a time.
    """
    pdf_dir = Path(pdf_dir or settings.pdf_dir)
    report_path = Path(report_path or pdf_dir / "report.json")
    workers = min(max(workers or settings.fetch_workers, 1), 4)
    referer = referer or settings.referer
    warm = settings.warm_session if warm is None else warm

    run_id = new_run_id("download")
    logger.info("Download run %s: %s entries, workers=%s", run_id, len(manifest.entries), workers)

    fetch_kwargs = {"referer": referer, "retry_delay": retry_delay}

    async with new_session(transport=transport) as client:
        if warm:
            await warm_session(client, referer)

        def _dest(entry: ManifestEntry) -> Path:
            return entry.pdf_path(pdf_dir, manifest.base_dir)

        if workers == 1:
            records = []
            for entry in manifest.entries:
                records.append(
                    await download_entry(
                        client, entry, _dest(entry), run_id=run_id, events_path=events_path, **fetch_kwargs
                    )
                )
        else:
            sem = asyncio.Semaphore(workers)

            async def _bounded(entry: ManifestEntry) -> DownloadRecord:
                async with sem:
                    return await download_entry(
                        client, entry, _dest(entry), run_id=run_id, events_path=events_path, **fetch_kwargs
                    )

            # gather keeps manifest order in the result list
            records = list(await asyncio.gather(*(_bounded(e) for e in manifest.entries)))

    summary = StageSummary(
        stage="download",
        run_id=run_id,
        ok=sum(1 for r in records if r.ok),
        failed=sum(1 for r in records if not r.ok),
        report_path=str(report_path),
        failures=[r.identifier for r in records if not r.ok],
    )
    write_report(report_path, [r.model_dump(mode="json") for r in records])
    logger.info(summary.line())
    logger.info("Report: %s", report_path)
    return summary, records


async def acquire_document(
    url: str,
    dest: Union[str, Path],
    *,
    referer: str,
    warm: Optional[bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    retry_delay: Optional[float] = None,
) -> FetchResult:
    """
    Download a single document outside the manifest (the Act).
    Same session rules, validation and retry as the batch.
    """
    warm = settings.warm_session if warm is None else warm
    async with new_session(transport=transport) as client:
        if warm:
            await warm_session(client, referer)
        logger.info("Downloading %s", url)
        result = await download_pdf(client, url, dest, referer=referer, retry_delay=retry_delay)

    if result.ok:
        logger.info("Saved PDF -> %s (%s bytes)", os.fspath(dest), result.byte_size)
    else:
        logger.error("Download failed for %s: %s", url, result.reason)
    return result
