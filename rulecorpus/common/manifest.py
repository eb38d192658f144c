"""
Manifest of documents to acquire.

The manifest is a YAML list; each item names one rule part:

    - part: 91
      name: General Operating and Flight Rules
      url: https://www.aviation.govt.nz/assets/rules/consolidations/Part_091_Consolidation.pdf
      pdf: download/car/Part_091_Consolidation.pdf   # optional override
      md: md/car/Part_091.md                         # optional override

Unset paths are derived from the identifier so that acquisition, conversion
and combination agree on where each artifact lives.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Union

import httpx
import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from rulecorpus.common.errors import ConfigError
from rulecorpus.common.storage import write_atomic

logger = logging.getLogger("config")


def zero_pad(identifier: Union[int, str]) -> str:
    """91 -> '091', '7' -> '007'. Non-numeric identifiers are rejected."""
    text = str(identifier).strip()
    if not text.isdigit():
        raise ValueError(f"identifier must be numeric, got {identifier!r}")
    return text.zfill(3)


class ManifestEntry(BaseModel):
    """
    One document to acquire. Accepts the original YAML keys (part/name/url/pdf/md)
    as well as the long names.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    identifier: str = Field(validation_alias=AliasChoices("identifier", "part"))
    display_name: str = Field(validation_alias=AliasChoices("display_name", "name"))
    source_url: str = Field(validation_alias=AliasChoices("source_url", "url"))
    pdf: Optional[str] = Field(None, validation_alias=AliasChoices("pdf", "pdf_path"))
    md: Optional[str] = Field(None, validation_alias=AliasChoices("md", "md_path"))

    @field_validator("identifier", mode="before")
    @classmethod
    def _pad_identifier(cls, v):
        return zero_pad(v)

    @field_validator("display_name", "source_url")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("source_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"not a valid URL: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("must be an absolute http(s) URL")
        return v

    @field_validator("pdf", "md", mode="before")
    @classmethod
    def _blank_is_unset(cls, v):
        if v is None or str(v).strip() in ("", "~", "null"):
            return None
        return str(v).strip()

    @field_validator("md")
    @classmethod
    def _md_extension(cls, v: Optional[str]) -> Optional[str]:
        # a markdown path mistakenly pointing at the PDF
        if v and v.lower().endswith(".pdf"):
            return v[:-4] + ".md"
        return v

    @property
    def sort_key(self) -> int:
        return int(self.identifier)

    @property
    def stem(self) -> str:
        return f"Part_{self.identifier}"

    def pdf_path(self, pdf_dir: Union[str, Path], base_dir: Union[str, Path] = ".") -> Path:
        """Local PDF location: override (relative to base_dir) or <pdf_dir>/Part_<id>_Consolidation.pdf."""
        if self.pdf:
            return _resolve(self.pdf, base_dir)
        return Path(pdf_dir) / f"{self.stem}_Consolidation.pdf"

    def md_path(self, md_dir: Union[str, Path], base_dir: Union[str, Path] = ".") -> Path:
        """Normalized markdown location: override or <md_dir>/Part_<id>.md."""
        if self.md:
            return _resolve(self.md, base_dir)
        return Path(md_dir) / f"{self.stem}.md"


def _resolve(path: str, base_dir: Union[str, Path]) -> Path:
    p = Path(path)
    return p if p.is_absolute() else Path(base_dir) / p


class Manifest(BaseModel):
    """All entries of one manifest file, in file order."""
    path: Optional[str] = None
    entries: List[ManifestEntry]

    @property
    def base_dir(self) -> Path:
        """Directory that relative path overrides are resolved against."""
        return Path(self.path).parent if self.path else Path(".")

    def sorted_entries(self) -> List[ManifestEntry]:
        """Entries ordered ascending by numeric identifier."""
        return sorted(self.entries, key=lambda e: e.sort_key)

    def get(self, identifier: Union[int, str]) -> Optional[ManifestEntry]:
        key = zero_pad(identifier)
        return next((e for e in self.entries if e.identifier == key), None)


def parse_manifest(raw: object, path: Optional[str] = None) -> Manifest:
    """
    Validate already-parsed YAML content.
    Raises ConfigError for anything that is not a list of valid, uniquely
    keyed entries.
    """
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise ConfigError(f"Manifest {path or '<inline>'} must be a YAML list, got {type(raw).__name__}")

    entries: List[ManifestEntry] = []
    seen = set()
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"Manifest entry #{idx} is not a mapping: {item!r}")
        try:
            entry = ManifestEntry.model_validate(item)
        except ValidationError as e:
            raise ConfigError(f"Manifest entry #{idx} is invalid: {e}") from e
        if entry.identifier in seen:
            raise ConfigError(f"Duplicate manifest identifier {entry.identifier}")
        seen.add(entry.identifier)
        entries.append(entry)

    return Manifest(path=path, entries=entries)


def load_manifest(path: Union[str, Path]) -> Manifest:
    """Read and validate a manifest file. Any problem is a fatal ConfigError."""
    path = str(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            # BaseLoader keeps every scalar a string: "012" must not become octal 10
            raw = yaml.load(f, Loader=yaml.BaseLoader)
    except OSError as e:
        raise ConfigError(f"Cannot read manifest {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Manifest {path} is not valid YAML: {e}") from e

    manifest = parse_manifest(raw, path=path)
    logger.info("Loaded manifest %s entries=%s", path, len(manifest.entries))
    return manifest


def write_manifest(
    path: Union[str, Path],
    entries: List[ManifestEntry],
    pdf_dir: Union[str, Path],
    md_dir: Union[str, Path],
) -> None:
    """
    Write entries back as YAML with explicit pdf/md paths filled in,
    so the manifest documents the layout it will produce.
    Paths are written relative to the manifest's directory where possible.
    """
    base = Path(path).parent

    def rel(p: Path) -> str:
        try:
            return os.path.relpath(p, base)
        except ValueError:
            # different drive on Windows
            return str(p)

    rows = []
    for e in sorted(entries, key=lambda e: e.sort_key):
        rows.append(
            {
                "part": e.identifier,
                "name": e.display_name,
                "url": e.source_url,
                "pdf": e.pdf or rel(e.pdf_path(pdf_dir, base)),
                "md": e.md or rel(e.md_path(md_dir, base)),
            }
        )

    write_atomic(path, yaml.safe_dump(rows, sort_keys=False, allow_unicode=True))
    logger.info("Wrote manifest %s entries=%s", path, len(rows))
