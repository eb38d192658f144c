# Data models for the acquisition stage.

from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel

PDF_SIGNATURE = b"%PDF-"

# Content types servers use for PDFs. Anything else is a mis-served page.
PDF_MIME_TYPES = frozenset({"application/pdf", "application/x-pdf"})


@dataclass
class FetchResult:
    """
    Outcome of one GET attempt (or of the final attempt after a retry).
    body is only kept in memory; it is written to disk by the caller.
    """
    status: Literal["ok", "fail"]
    mime_type: str
    byte_size: int
    final_url: str
    body: bytes = field(default=b"", repr=False)
    status_code: Optional[int] = None
    attempts: int = 1
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class DownloadRecord(BaseModel):
    """
    One row of the acquisition run report (<pdf_dir>/report.json).
    """
    identifier: str     # Zero-padded manifest identifier
    name: str           # Display name from the manifest
    url: str            # Requested URL
    ok: bool            # True when the PDF passed validation and was saved
    size: int           # Payload size in bytes of the last attempt
    mime: str           # Content type of the last attempt ("" on network failure)
    path: str           # Final local path (written only when ok)
    final_url: Optional[str] = None  # URL after redirects
    attempts: int = 1
    error: Optional[str] = None

