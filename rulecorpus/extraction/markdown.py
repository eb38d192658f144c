"""
Text -> markdown helpers shared by the conversion and combine stages.

normalize_markdown() is a pure function: the same input always yields the
same output, and normalizing its own output changes nothing.
"""

import re
from typing import Any, Dict, Optional, Tuple

import yaml

from rulecorpus.common.events import now_iso
from .models import ExtractedDocument, FrontMatter, NormalizedDocument

_LINE_SPLIT = re.compile(r"\r?\n")
MAX_BLANK_RUN = 2


def normalize_markdown(text: str) -> str:
    """
    Strip trailing whitespace from every line and cap runs of blank lines at two.
    Runs of one or two blank lines are left as they are.
    """
    out = []
    blank = 0
    for line in _LINE_SPLIT.split(text):
        line = line.rstrip()
        if line:
            blank = 0
            out.append(line)
            continue
        blank += 1
        if blank <= MAX_BLANK_RUN:
            out.append("")
    return "\n".join(out)


# -----------------------------------------------------------------------------
# YAML flavour for front matter and provenance blocks
# -----------------------------------------------------------------------------
# Timestamps stay strings in both directions, so generated_at is reproduced
# exactly as it was written.
_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


def _without_timestamps(resolvers):
    return {
        first: [(tag, regexp) for tag, regexp in entries if tag != _TIMESTAMP_TAG]
        for first, entries in resolvers.items()
    }


class _FrontMatterLoader(yaml.SafeLoader):
    pass


class _FrontMatterDumper(yaml.SafeDumper):
    pass


_FrontMatterLoader.yaml_implicit_resolvers = _without_timestamps(yaml.SafeLoader.yaml_implicit_resolvers)
_FrontMatterDumper.yaml_implicit_resolvers = _without_timestamps(yaml.SafeDumper.yaml_implicit_resolvers)


def dump_yaml(data: Dict[str, Any]) -> str:
    """Block-style YAML, keys in insertion order, never line-wrapped."""
    return yaml.dump(
        data,
        Dumper=_FrontMatterDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )


def parse_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """
    Split a markdown artifact into (metadata, body).

    Best effort: no opening fence, no closing fence, invalid YAML or YAML that
    is not a mapping all yield empty metadata. Never raises.
    """
    lines = _LINE_SPLIT.split(text)
    if not lines or lines[0].strip() != "---":
        return {}, text

    end = next((i for i in range(1, len(lines)) if lines[i].strip() == "---"), None)
    if end is None:
        return {}, text

    body = "\n".join(lines[end + 1:])
    try:
        meta = yaml.load("\n".join(lines[1:end]), Loader=_FrontMatterLoader)
    except yaml.YAMLError:
        meta = None
    if not isinstance(meta, dict):
        meta = {}
    return meta, body


# -----------------------------------------------------------------------------
# Document assembly
# -----------------------------------------------------------------------------
def build_title(prefix: str, identifier: str, name: str) -> str:
    """'CAR Part', '091', 'General Operating ...' -> 'CAR Part 091 - General Operating ...'"""
    return f"{prefix} {identifier} - {name}"


def assemble_document(
    extracted: ExtractedDocument,
    *,
    title: str,
    heading: str,
    source_url: str,
    generated_at: Optional[str] = None,
) -> NormalizedDocument:
    """
    Combine extraction output with manifest metadata.
    Leading and trailing blank lines of the body are dropped; the rest is
    normalize_markdown() output.
    """
    body = normalize_markdown(extracted.text).strip("\n")
    return NormalizedDocument(
        front_matter=FrontMatter(
            title=title,
            source_url=source_url,
            pages=extracted.page_count,
            generated_at=generated_at or now_iso(),
        ),
        heading=heading,
        body=body,
    )


def render_document(doc: NormalizedDocument) -> str:
    """On-disk form: fenced front matter, '# heading', blank line, body, final newline."""
    head = f"---\n{dump_yaml(doc.front_matter.as_dict())}---\n# {doc.heading}\n"
    if not doc.body:
        return head
    return f"{head}\n{doc.body}\n"
