"""Shared pytest fixtures for receipt_ingest tests."""

from __future__ import annotations

import io

import fitz
import pytest
from PIL import Image

from receipt_ingest.core import ocr

KAUFLAND_LINES = [
    "KAUFLAND",
    "ESPRESSO 2 x 7,50 15,00",
    "TOTAL 15,00",
    "2024-05-01 10:00",
]


def make_pdf(lines: list[str]) -> bytes:
    """Build a one-page PDF with a real text layer."""
    doc = fitz.open()
    page = doc.new_page()
    y = 72
    for line in lines:
        page.insert_text((72, y), line, fontsize=11)
        y += 16
    data = doc.tobytes()
    doc.close()
    return data


def make_png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (240, 120), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def kaufland_pdf() -> bytes:
    return make_pdf(KAUFLAND_LINES)


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def fake_tesseract(monkeypatch):
    """Replace the Tesseract calls so tests do not need the binary.

    Set ``fake_tesseract.text`` to control the recognized lines and
    ``fake_tesseract.conf`` for the word confidences (applied in turn).
    ``fake_tesseract.images`` collects the images handed to OCR.
    """

    class FakeTesseract:
        text = "\n".join(KAUFLAND_LINES)
        conf = ["90", "80.5"]
        images: list = []

        def image_to_data(self, img, lang=None, output_type=None, **kwargs):
            self.images.append(img)
            data = {"block_num": [], "par_num": [], "line_num": [], "conf": [], "text": []}

            def row(line_num, conf, text):
                data["block_num"].append(1)
                data["par_num"].append(1)
                data["line_num"].append(line_num)
                data["conf"].append(conf)
                data["text"].append(text)

            # Page/block level boxes carry no word and a -1 confidence
            row(0, "-1", "")
            n = 0
            for line_num, line in enumerate(self.text.splitlines(), start=1):
                row(line_num, -1, "")
                for word in line.split():
                    row(line_num, self.conf[n % len(self.conf)], word)
                    n += 1
            return data

    fake = FakeTesseract()
    fake.images = []
    monkeypatch.setattr(ocr.pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(ocr.pytesseract, "image_to_data", fake.image_to_data)
    monkeypatch.delenv("TESSERACT_CMD", raising=False)
    return fake
