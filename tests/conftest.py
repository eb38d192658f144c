import pytest

from rulecorpus.common.manifest import parse_manifest


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _content_stream(page_text: str) -> bytes:
    ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for i, line in enumerate(page_text.split("\n")):
        if i:
            ops.append("T*")
        ops.append(f"({_escape(line)}) Tj")
    ops.append("ET")
    return " ".join(ops).encode("latin-1")


def _assemble(page_texts, padding: int) -> bytes:
    n = len(page_texts)
    kids = " ".join(f"{4 + 2 * i} 0 R" for i in range(n))
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {n} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for i, text in enumerate(page_texts):
        stream = _content_stream(text)
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {5 + 2 * i} 0 R >>"
            ).encode()
        )
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    if padding:
        out += b"%" + b"0" * padding + b"\n"

    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % num + body + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for off in offsets:
        out += b"%010d 00000 n \n" % off
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


def build_pdf(page_texts, pad_to: int = 0) -> bytes:
    """
    Minimal valid PDF, one page per string (newlines start a new text line).
    pad_to grows the file with a comment line so it clears the size check.
    """
    data = _assemble(page_texts, 0)
    if len(data) < pad_to:
        data = _assemble(page_texts, pad_to - len(data))
    return data


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path, monkeypatch):
    # the default data root (and the event log) is relative to the working directory
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def three_part_manifest(tmp_path):
    """Entries deliberately out of order."""
    raw = [
        {"part": "087", "name": "Gliders", "url": "https://rules.example/Part_087.pdf"},
        {"part": "12", "name": "Accidents, Incidents, and Statistics", "url": "https://rules.example/Part_012.pdf"},
        {"part": "100", "name": "Safety Management", "url": "https://rules.example/Part_100.pdf"},
    ]
    return parse_manifest(raw, path=str(tmp_path / "car.yaml"))
