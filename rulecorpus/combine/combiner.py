"""
Combine stage: every per-document markdown artifact -> one corpus file.

Each document is wrapped in provenance markers:

    <!-- BEGIN Part_001: Definitions and Abbreviations -->
    ```yaml
    part: '001'
    name: Definitions and Abbreviations
    source_url: https://...
    pages: 58
    generated_at: 2025-10-29T19:45:12.123456+00:00
    ```
    # Definitions and Abbreviations
    ...
    <!-- END Part_001 -->

Documents appear in ascending identifier order whatever order they were
produced in. The corpus is rebuilt from scratch on every run.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from rulecorpus.common.config import settings
from rulecorpus.common.events import new_event, new_run_id, publish_event
from rulecorpus.common.manifest import Manifest
from rulecorpus.common.storage import write_atomic
from rulecorpus.extraction.markdown import dump_yaml, parse_front_matter

logger = logging.getLogger("combine")

# three or more blank lines
_BLANK_RUNS = re.compile(r"\n{4,}")


@dataclass(frozen=True)
class CorpusDocument:
    identifier: str
    display_name: str
    source_url: str
    body: str
    page_count: Optional[Any] = None
    generated_at: Optional[Any] = None

    def provenance(self) -> Dict[str, Any]:
        block = {
            "part": self.identifier,
            "name": self.display_name,
            "source_url": self.source_url,
            "pages": self.page_count,
            "generated_at": self.generated_at,
        }
        return {k: v for k, v in block.items() if v is not None}

    def render(self) -> str:
        stem = f"Part_{self.identifier}"
        out = f"<!-- BEGIN {stem}: {self.display_name} -->\n```yaml\n{dump_yaml(self.provenance())}```\n"
        if self.body:
            out += f"{self.body}\n"
        return out + f"<!-- END {stem} -->\n"


@dataclass(frozen=True)
class SkippedEntry:
    identifier: str
    path: str
    reason: str = "missing_artifact"


@dataclass
class CombineResult:
    text: str
    included: List[str] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.included)


def build_corpus(manifest: Manifest, md_dir: Optional[Union[str, Path]] = None) -> CombineResult:
    """
    Read the artifacts of every manifest entry and build the corpus text.
    Does not write anything; missing artifacts are skipped with a warning.
    """
    md_dir = Path(md_dir or settings.md_dir)
    docs: List[CorpusDocument] = []
    skipped: List[SkippedEntry] = []

    for entry in manifest.sorted_entries():
        md_path = entry.md_path(md_dir, manifest.base_dir)
        if not md_path.is_file():
            logger.warning("[MISS] skipping Part %s (not found: %s)", entry.identifier, md_path)
            skipped.append(SkippedEntry(identifier=entry.identifier, path=str(md_path)))
            continue

        meta, body = parse_front_matter(md_path.read_text(encoding="utf-8", errors="replace"))
        docs.append(
            CorpusDocument(
                identifier=entry.identifier,
                display_name=entry.display_name,
                source_url=meta.get("source_url") or entry.source_url,
                body=body.strip(),
                page_count=meta.get("pages"),
                generated_at=meta.get("generated_at"),
            )
        )

    text = "\n".join(doc.render() for doc in docs)
    text = _BLANK_RUNS.sub("\n\n", text).strip("\n") + "\n"
    return CombineResult(text=text, included=[d.identifier for d in docs], skipped=skipped)


def combine(
    manifest: Manifest,
    *,
    md_dir: Optional[Union[str, Path]] = None,
    out_path: Optional[Union[str, Path]] = None,
    events_path: Optional[str] = None,
) -> CombineResult:
    """Build the corpus and atomically replace the corpus file."""
    out_path = Path(out_path or settings.corpus_path)
    result = build_corpus(manifest, md_dir)
    write_atomic(out_path, result.text)

    publish_event(
        new_event(
            "CorpusCombined",
            payload={
                "path": str(out_path),
                "included": result.included,
                "skipped": [s.identifier for s in result.skipped],
                "chars": len(result.text),
            },
            correlation_id=new_run_id("combine"),
        ),
        events_path,
    )
    logger.info("Combined %s files -> %s (%s chars)", result.count, out_path, len(result.text))
    return result
