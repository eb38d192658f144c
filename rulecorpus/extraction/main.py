"""
Conversion stage (PDF -> normalized markdown).

Responsibilities:
- For each manifest entry, locate its PDF (written by the acquisition stage)
- Extract, normalize and assemble the markdown artifact, overwrite it atomically
- Record a ConvertRecord and a DocumentConverted/DocumentConvertFailed event
- Write <md_dir>/convert_report.json and log the summary
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from rulecorpus.common.config import settings
from rulecorpus.common.errors import ExtractionError
from rulecorpus.common.events import new_event, new_run_id, publish_event
from rulecorpus.common.manifest import Manifest
from rulecorpus.common.models import StageSummary
from rulecorpus.common.storage import write_atomic, write_report
from .extractor import extract_pdf
from .markdown import assemble_document, build_title, render_document
from .models import ConvertRecord

logger = logging.getLogger("extraction")


def convert_document(
    pdf_path: Union[str, Path],
    md_path: Union[str, Path],
    *,
    identifier: str,
    title: str,
    heading: str,
    source_url: str,
) -> ConvertRecord:
    """
    Convert one PDF into its markdown artifact.
    Every failure is reported in the returned record, never raised.
    """
    pdf_path, md_path = Path(pdf_path), Path(md_path)
    record = ConvertRecord(identifier=identifier, ok=False, pdf_path=str(pdf_path), path=str(md_path))

    if not pdf_path.exists():
        logger.warning("[MISS] Part %s missing PDF at %s", identifier, pdf_path)
        record.error = "missing_pdf"
        return record

    try:
        extracted = extract_pdf(pdf_path, identifier)
        doc = assemble_document(extracted, title=title, heading=heading, source_url=source_url)
        written = write_atomic(md_path, render_document(doc))
    except ExtractionError as e:
        logger.error("[FAIL] Part %s -> %s", identifier, e)
        record.error = str(e)
        return record
    except OSError as e:
        logger.exception("[FAIL] Part %s -> could not write %s", identifier, md_path)
        record.error = str(e)
        return record

    record.ok = True
    record.pages = extracted.page_count
    record.bytes = written
    logger.info("[OK] Part %s -> %s (%s pages, %s bytes)", identifier, md_path, record.pages, record.bytes)
    return record


def convert(
    manifest: Manifest,
    *,
    pdf_dir: Optional[Union[str, Path]] = None,
    md_dir: Optional[Union[str, Path]] = None,
    report_path: Optional[Union[str, Path]] = None,
    events_path: Optional[str] = None,
    title_prefix: Optional[str] = None,
) -> Tuple[StageSummary, List[ConvertRecord]]:
    """
    Convert every manifest entry whose PDF exists. Entries are processed in
    manifest order; partial input (some PDFs missing) is normal.
    """
    pdf_dir = Path(pdf_dir or settings.pdf_dir)
    md_dir = Path(md_dir or settings.md_dir)
    report_path = Path(report_path or md_dir / "convert_report.json")
    title_prefix = title_prefix or settings.title_prefix

    run_id = new_run_id("convert")
    records: List[ConvertRecord] = []
    for entry in manifest.entries:
        record = convert_document(
            entry.pdf_path(pdf_dir, manifest.base_dir),
            entry.md_path(md_dir, manifest.base_dir),
            identifier=entry.identifier,
            title=build_title(title_prefix, entry.identifier, entry.display_name),
            heading=entry.display_name,
            source_url=entry.source_url,
        )
        records.append(record)
        publish_event(
            new_event(
                "DocumentConverted" if record.ok else "DocumentConvertFailed",
                payload=record.model_dump(mode="json"),
                correlation_id=run_id,
            ),
            events_path,
        )

    summary = StageSummary(
        stage="convert",
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
