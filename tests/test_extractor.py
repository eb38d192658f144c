import pytest

from rulecorpus.common.errors import ExtractionError
from rulecorpus.extraction.extractor import extract_pdf
from rulecorpus.extraction.main import convert_document
from rulecorpus.extraction.markdown import parse_front_matter


def test_three_page_pdf_in_page_order(tmp_path, make_pdf):
    pdf = tmp_path / "Part_001.pdf"
    pdf.write_bytes(make_pdf(["Rule 1", "Rule 2", "Rule 3"]))

    doc = extract_pdf(pdf, "001")

    assert doc.page_count == 3
    assert doc.text.index("Rule 1") < doc.text.index("Rule 2") < doc.text.index("Rule 3")
    assert doc.text.split("\n\n") == ["Rule 1", "Rule 2", "Rule 3"]
    print("\n[TEST] extract_pdf kept page order ✅")


def test_text_lines_on_a_page_joined_with_spaces(tmp_path, make_pdf):
    pdf = tmp_path / "Part_002.pdf"
    pdf.write_bytes(make_pdf(["91.101 Aircraft airworthiness\n(a) A pilot must not"]))

    doc = extract_pdf(pdf, "002")

    assert doc.page_count == 1
    assert doc.text == "91.101 Aircraft airworthiness (a) A pilot must not"


def test_corrupt_pdf_raises_tagged_error(tmp_path):
    pdf = tmp_path / "Part_003.pdf"
    pdf.write_bytes(b"this is not a pdf at all")

    with pytest.raises(ExtractionError) as exc:
        extract_pdf(pdf, "003")

    assert exc.value.identifier == "003"
    assert str(exc.value).startswith("[003]")


def test_convert_document_end_to_end(tmp_path, make_pdf):
    pdf = tmp_path / "Part_001.pdf"
    md = tmp_path / "md" / "Part_001.md"
    pdf.write_bytes(make_pdf(["Rule 1", "Rule 2", "Rule 3"]))

    record = convert_document(
        pdf,
        md,
        identifier="001",
        title="CAR Part 001 - Definitions",
        heading="Definitions",
        source_url="https://rules.example/Part_001.pdf",
    )

    assert record.ok
    assert record.pages == 3
    assert record.bytes == md.stat().st_size
    meta, body = parse_front_matter(md.read_text(encoding="utf-8"))
    assert meta["pages"] == 3
    assert meta["title"] == "CAR Part 001 - Definitions"
    assert body.startswith("# Definitions\n\nRule 1\n\nRule 2\n\nRule 3")
    assert not md.with_name("Part_001.md.tmp").exists()


def test_convert_document_missing_pdf(tmp_path):
    record = convert_document(
        tmp_path / "nope.pdf",
        tmp_path / "nope.md",
        identifier="404",
        title="t",
        heading="h",
        source_url="u",
    )
    assert not record.ok
    assert record.error == "missing_pdf"
    assert not (tmp_path / "nope.md").exists()


def test_convert_document_corrupt_pdf_recorded(tmp_path):
    pdf = tmp_path / "Part_009.pdf"
    pdf.write_bytes(b"%PDF-1.4\ngarbage")

    record = convert_document(pdf, tmp_path / "Part_009.md", identifier="009", title="t", heading="h", source_url="u")

    assert not record.ok
    assert record.error.startswith("[009]")
