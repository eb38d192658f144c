"""
Responsible for "extraction":
- Open a validated PDF with pdfplumber
- Read every page in ascending order and collect its text runs
- Join runs on a page with single spaces, pages with a blank line

Pure and stateless: no shared state between calls, so documents can be
extracted in parallel regardless of how they were fetched.
"""

import logging
from pathlib import Path
from typing import Union

import pdfplumber

from rulecorpus.common.errors import ExtractionError
from .models import ExtractedDocument

logger = logging.getLogger("extraction")

PAGE_SEPARATOR = "\n\n"


def _page_text(page) -> str:
    """Text runs of one page (pdfplumber text lines), blank for runs without text."""
    runs = page.extract_text_lines(return_chars=False)
    return " ".join(run.get("text") or "" for run in runs)


def extract_pdf(pdf_path: Union[str, Path], identifier: str = "?") -> ExtractedDocument:
    """
    Extract ordered page text from pdf_path.
    Raises ExtractionError (tagged with identifier) when the file cannot be
    opened or parsed, e.g. corrupt or encrypted PDFs.
    """
    try:
        with pdfplumber.open(pdf_path) as pdf:
            pages = [_page_text(page) for page in pdf.pages]
    except Exception as e:
        raise ExtractionError(identifier, f"cannot extract {pdf_path}: {type(e).__name__}: {e}", str(pdf_path)) from e

    doc = ExtractedDocument(page_count=len(pages), text=PAGE_SEPARATOR.join(pages))
    logger.info("Extracted %s pages=%s chars=%s", identifier, doc.page_count, len(doc.text))
    return doc
