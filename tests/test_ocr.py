import io

import pytest
from PIL import Image

from receipt_ingest.core import ocr
from receipt_ingest.core.models import DocumentKind
from receipt_ingest.core.ocr import ExtractionFailure, extract_text, infer_document_kind


def test_pdf_text_layer_is_extracted_without_confidence(kaufland_pdf) -> None:
    extracted = extract_text(kaufland_pdf, DocumentKind.PDF)

    assert "KAUFLAND" in extracted.text
    assert "ESPRESSO 2 x 7,50 15,00" in extracted.text
    assert extracted.confidence is None


def test_pdf_without_text_layer_gives_empty_text(pdf_factory) -> None:
    extracted = extract_text(pdf_factory([]), "pdf")

    assert extracted.text.strip() == ""
    assert extracted.confidence is None


def test_corrupt_pdf_raises_extraction_failure() -> None:
    with pytest.raises(ExtractionFailure):
        extract_text(b"this is not a pdf", DocumentKind.PDF)


def test_image_is_ocred_with_rounded_confidence(png_bytes, fake_tesseract) -> None:
    extracted = extract_text(png_bytes, DocumentKind.IMAGE)

    assert extracted.text.startswith("KAUFLAND")
    assert extracted.confidence == 85.25
    # Normalized to grayscale before OCR
    assert fake_tesseract.images[0].mode == "L"


def test_image_is_ocred_in_a_single_pass(png_bytes, fake_tesseract) -> None:
    extracted = extract_text(png_bytes, DocumentKind.IMAGE)

    assert len(fake_tesseract.images) == 1
    assert extracted.text.splitlines() == [
        "KAUFLAND",
        "ESPRESSO 2 x 7,50 15,00",
        "TOTAL 15,00",
        "2024-05-01 10:00",
    ]


def test_words_are_grouped_by_block_paragraph_and_line() -> None:
    data = {
        "block_num": [1, 1, 1, 1, 2, 2],
        "par_num": [0, 1, 1, 1, 1, 1],
        "line_num": [0, 1, 1, 2, 1, 1],
        "conf": ["-1", "95", "91", "88", "70", "-1"],
        "text": ["", "APA", "PLATA", "5,00", "TOTAL", " "],
    }

    assert ocr._text_from_data(data) == "APA PLATA\n5,00\nTOTAL"
    assert ocr._mean_confidence(data) == 86.0


def test_image_without_word_confidence_scores_zero(png_bytes, fake_tesseract) -> None:
    fake_tesseract.text = ""

    extracted = extract_text(png_bytes, "image")

    assert extracted.text == ""
    assert extracted.confidence == 0.0


def test_image_is_auto_oriented_from_exif(fake_tesseract) -> None:
    img = Image.new("RGB", (300, 100), "white")
    exif = img.getexif()
    exif[0x0112] = 6  # rotated 90 degrees clockwise
    buf = io.BytesIO()
    img.save(buf, format="JPEG", exif=exif.tobytes())

    extract_text(buf.getvalue(), DocumentKind.IMAGE)

    assert fake_tesseract.images[0].size == (100, 300)


def test_unreadable_image_raises_extraction_failure(fake_tesseract) -> None:
    with pytest.raises(ExtractionFailure):
        extract_text(b"definitely not an image", DocumentKind.IMAGE)


def test_oversized_image_raises_extraction_failure(png_bytes, fake_tesseract, monkeypatch) -> None:
    # Anything above twice the pixel limit is refused as a decompression bomb
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    with pytest.raises(ExtractionFailure, match="Unreadable image"):
        extract_text(png_bytes, DocumentKind.IMAGE)
    assert fake_tesseract.images == []


def test_unsupported_kind_raises_extraction_failure() -> None:
    with pytest.raises(ExtractionFailure):
        extract_text(b"hello", "docx")


def _track_engines(monkeypatch):
    engines = []

    class TrackedEngine(ocr.TesseractEngine):
        def __init__(self, lang):
            super().__init__(lang)
            engines.append(self)

    monkeypatch.setattr(ocr, "TesseractEngine", TrackedEngine)
    return engines


def test_engine_is_released_after_success(png_bytes, fake_tesseract, monkeypatch) -> None:
    engines = _track_engines(monkeypatch)

    extract_text(png_bytes, DocumentKind.IMAGE)
    extract_text(png_bytes, DocumentKind.IMAGE)

    assert len(engines) == 2
    assert engines[0] is not engines[1]
    assert not any(e.is_open for e in engines)


def test_engine_is_released_when_ocr_fails(png_bytes, fake_tesseract, monkeypatch) -> None:
    engines = _track_engines(monkeypatch)

    def broken(img, lang=None, output_type=None, **kwargs):
        raise ocr.pytesseract.TesseractError(1, "engine crashed")

    monkeypatch.setattr(ocr.pytesseract, "image_to_data", broken)

    with pytest.raises(ExtractionFailure, match="engine crashed"):
        extract_text(png_bytes, DocumentKind.IMAGE)

    assert len(engines) == 1
    assert not engines[0].is_open


def test_missing_tesseract_binary_is_extraction_failure(png_bytes, monkeypatch) -> None:
    def not_found():
        raise ocr.pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(ocr.pytesseract, "get_tesseract_version", not_found)

    with pytest.raises(ExtractionFailure):
        extract_text(png_bytes, DocumentKind.IMAGE)


def test_ocr_engine_context_releases_on_error(fake_tesseract) -> None:
    captured = []
    with pytest.raises(ValueError):
        with ocr.ocr_engine("ron") as engine:
            captured.append(engine)
            assert engine.is_open
            raise ValueError("boom")

    assert captured[0].lang == "ron"
    assert not captured[0].is_open


def test_released_engine_refuses_work(fake_tesseract) -> None:
    with ocr.ocr_engine() as engine:
        pass

    with pytest.raises(ExtractionFailure):
        engine.recognize(Image.new("L", (10, 10)))


def test_ocr_lang_from_environment(fake_tesseract, monkeypatch) -> None:
    monkeypatch.setenv("OCR_LANG", "ron")
    with ocr.ocr_engine() as engine:
        assert engine.lang == "ron"
    with ocr.ocr_engine("eng") as engine:
        assert engine.lang == "eng"


@pytest.mark.parametrize(
    ("filename", "media_type", "expected"),
    [
        ("bon.PDF", None, DocumentKind.PDF),
        ("upload", "application/pdf", DocumentKind.PDF),
        ("photo.jpeg", None, DocumentKind.IMAGE),
        ("scan.webp", None, DocumentKind.IMAGE),
        (None, "image/png", DocumentKind.IMAGE),
    ],
)
def test_infer_document_kind(filename, media_type, expected) -> None:
    assert infer_document_kind(filename, media_type) == expected


def test_infer_document_kind_rejects_unknown_types() -> None:
    with pytest.raises(ExtractionFailure):
        infer_document_kind("notes.txt", "text/plain")
