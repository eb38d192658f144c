# Data models for the extraction (PDF -> markdown) stage.

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class ExtractedDocument:
    """Raw extraction output: page text in ascending page order, pages separated by a blank line."""
    page_count: int
    text: str


@dataclass(frozen=True)
class FrontMatter:
    title: str
    source_url: str
    pages: int
    generated_at: str

    def as_dict(self) -> Dict[str, Any]:
        # key order is part of the artifact format
        return {
            "title": self.title,
            "source_url": self.source_url,
            "pages": self.pages,
            "generated_at": self.generated_at,
        }


@dataclass(frozen=True)
class NormalizedDocument:
    """
    The durable per-document artifact: front matter, a level-1 heading and
    the normalized body. See markdown.render_document() for the on-disk form.
    """
    front_matter: FrontMatter
    heading: str
    body: str


class ConvertRecord(BaseModel):
    """
    One row of the conversion run report (<md_dir>/convert_report.json).
    """
    identifier: str          # Zero-padded manifest identifier
    ok: bool                 # True when the markdown artifact was written
    pdf_path: str            # Input PDF
    path: str                # Output markdown path
    pages: Optional[int] = None
    bytes: Optional[int] = None    # Size of the written markdown (UTF-8)
    error: Optional[str] = None    # "missing_pdf" or the extraction error text
