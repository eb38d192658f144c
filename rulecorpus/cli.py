import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer

from rulecorpus.combine.combiner import combine as combine_corpus
from rulecorpus.common.config import settings
from rulecorpus.common.errors import ConfigError, NetworkError
from rulecorpus.common.manifest import Manifest, load_manifest, write_manifest
from rulecorpus.common.storage import write_atomic
from rulecorpus.extraction.main import convert as convert_manifest
from rulecorpus.extraction.main import convert_document
from rulecorpus.grounding.assembler import build_chat_request, count_tokens, load_grounding
from rulecorpus.ingestion.crawler import fetch_html, merge_entries, parse_pdf_links
from rulecorpus.ingestion.fetcher import new_session
from rulecorpus.ingestion.main import acquire, acquire_document

logger = logging.getLogger("cli")

app = typer.Typer(
    name="rulecorpus",
    help="Acquire regulatory PDFs, convert them to normalized markdown and build a strict-citation grounding corpus.",
    add_completion=False,
)

ManifestOpt = Annotated[Optional[Path], typer.Option("--manifest", "-m", help="YAML manifest of documents.")]
PdfDirOpt = Annotated[Optional[Path], typer.Option("--pdf-dir", help="Directory for downloaded PDFs.")]
MdDirOpt = Annotated[Optional[Path], typer.Option("--md-dir", help="Directory for per-document markdown.")]
CorpusOpt = Annotated[Optional[Path], typer.Option("--out", "-o", help="Combined corpus file.")]


def _fail_with_error(message: str) -> NoReturn:
    """Echo to stderr, log, exit 1."""
    typer.echo(message, err=True)
    logger.error(message)
    raise typer.Exit(code=1)


def _load(manifest_path: Optional[Path]) -> Manifest:
    try:
        return load_manifest(manifest_path or settings.manifest_path)
    except ConfigError as e:
        _fail_with_error(str(e))


@app.command()
def discover(
    index_url: Annotated[Optional[str], typer.Option("--index-url", help="Page listing the rule-part PDFs.")] = None,
    manifest_path: ManifestOpt = None,
    pdf_dir: PdfDirOpt = None,
    md_dir: MdDirOpt = None,
) -> None:
    """
    Harvest rule-part PDF links from the index page into the manifest.
    Entries already in the manifest are kept as they are.
    """
    url = index_url or settings.referer
    path = manifest_path or Path(settings.manifest_path)

    existing = []
    if path.exists():
        existing = _load(path).entries

    async def _fetch() -> str:
        async with new_session() as client:
            return await fetch_html(client, url)

    try:
        html = asyncio.run(_fetch())
    except NetworkError as e:
        _fail_with_error(f"Could not fetch index page {url}: {e}")

    discovered = parse_pdf_links(html, url)
    merged = merge_entries(existing, discovered)
    write_manifest(path, merged, pdf_dir or settings.pdf_dir, md_dir or settings.md_dir)
    typer.echo(f"Manifest {path}: {len(merged)} entries ({len(merged) - len(existing)} new)")


@app.command()
def download(
    manifest_path: ManifestOpt = None,
    pdf_dir: PdfDirOpt = None,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", min=1, max=4, help="Concurrent fetches.")] = None,
    warm: Annotated[bool, typer.Option("--warm/--no-warm", help="Visit the referer page first.")] = True,
) -> None:
    """Download every manifest PDF (validated, retried once)."""
    manifest = _load(manifest_path)
    summary, _ = asyncio.run(acquire(manifest, pdf_dir=pdf_dir, workers=workers, warm=warm))
    typer.echo(summary.line())


@app.command()
def convert(
    manifest_path: ManifestOpt = None,
    pdf_dir: PdfDirOpt = None,
    md_dir: MdDirOpt = None,
) -> None:
    """Convert downloaded PDFs to normalized markdown."""
    manifest = _load(manifest_path)
    summary, _ = convert_manifest(manifest, pdf_dir=pdf_dir, md_dir=md_dir)
    typer.echo(summary.line())


@app.command()
def combine(
    manifest_path: ManifestOpt = None,
    md_dir: MdDirOpt = None,
    out: CorpusOpt = None,
) -> None:
    """Merge per-document markdown into the provenance-tagged corpus."""
    manifest = _load(manifest_path)
    result = combine_corpus(manifest, md_dir=md_dir, out_path=out)
    typer.echo(f"Combined {result.count} files ({len(result.skipped)} skipped)")


@app.command()
def act(
    url: Annotated[Optional[str], typer.Option("--url", help="PDF URL of the Act.")] = None,
    pdf_path: Annotated[Optional[Path], typer.Option("--pdf", help="Where to save the PDF.")] = None,
    md_path: Annotated[Optional[Path], typer.Option("--md", help="Where to write the markdown.")] = None,
    warm: Annotated[bool, typer.Option("--warm/--no-warm")] = True,
) -> None:
    """Download the Act and convert it to markdown."""
    url = url or settings.act_url
    pdf_path = pdf_path or Path(settings.act_pdf_path)
    md_path = md_path or Path(settings.act_md_path)

    result = asyncio.run(acquire_document(url, pdf_path, referer=settings.act_referer, warm=warm))
    if not result.ok:
        _fail_with_error(f"Act download failed: {result.reason}")

    record = convert_document(
        pdf_path,
        md_path,
        identifier="CAA",
        title=settings.act_title,
        heading=settings.act_title,
        source_url=url,
    )
    if not record.ok:
        _fail_with_error(f"Act conversion failed: {record.error}")
    typer.echo(f"Saved MD -> {md_path} ({record.pages} pages)")


@app.command()
def ground(
    corpus: Annotated[Optional[Path], typer.Option("--corpus", help="Combined corpus file.")] = None,
    act_md: Annotated[Optional[Path], typer.Option("--act", help="Act markdown (optional).")] = None,
    no_act: Annotated[bool, typer.Option("--no-act", help="Ground on the Rules only.")] = False,
    question: Annotated[Optional[str], typer.Option("--question", "-q", help="Question for the chat request.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the chat request body as JSON.")] = False,
    out: Annotated[Optional[Path], typer.Option("--out", "-o", help="Write the grounding text here.")] = None,
) -> None:
    """Assemble the grounding context (policy + Act + Rules)."""
    if as_json and not (question and question.strip()):
        _fail_with_error("--json needs a non-empty --question")

    act_path = None if no_act else (act_md or Path(settings.act_md_path))
    try:
        grounding = load_grounding(corpus or settings.corpus_path, act_path)
    except ConfigError as e:
        _fail_with_error(str(e))

    if out:
        write_atomic(out, grounding)

    tokens = count_tokens(grounding)
    typer.echo(f"Grounding: {len(grounding)} chars, {tokens} tokens", err=as_json)

    if as_json:
        payload = build_chat_request(
            grounding,
            question,
            model=settings.openai_model,
            max_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
        )
        typer.echo(json.dumps(payload, ensure_ascii=False))


@app.command()
def run(
    manifest_path: ManifestOpt = None,
    pdf_dir: PdfDirOpt = None,
    md_dir: MdDirOpt = None,
    out: CorpusOpt = None,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", min=1, max=4)] = None,
) -> None:
    """download + convert + combine in one go."""
    manifest = _load(manifest_path)
    fetched, _ = asyncio.run(acquire(manifest, pdf_dir=pdf_dir, workers=workers))
    converted, _ = convert_manifest(manifest, pdf_dir=pdf_dir, md_dir=md_dir)
    result = combine_corpus(manifest, md_dir=md_dir, out_path=out)
    typer.echo(f"download: {fetched.line()}")
    typer.echo(f"convert: {converted.line()}")
    typer.echo(f"combine: {result.count} files ({len(result.skipped)} skipped)")


if __name__ == "__main__":
    app()
