"""
Text extraction for receipt images (OCR) and PDFs (text layer).
"""

import io
import logging
import os
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple, Union

import fitz  # pymupdf
import pytesseract
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from .models import DocumentKind, ExtractedText
from .utils import IMAGE_EXTS, PDF_EXTS, PDF_MEDIA_TYPE

logger = logging.getLogger(__name__)

DEFAULT_OCR_LANG = "eng"


class ExtractionFailure(RuntimeError):
    """Raised when a document cannot be turned into text."""


def infer_document_kind(filename: Optional[str], media_type: Optional[str] = None) -> DocumentKind:
    """Pick the extraction path from a file name and/or declared media type."""
    ext = os.path.splitext(filename or "")[1].lower()
    media_type = (media_type or "").lower()
    if ext in PDF_EXTS or media_type == PDF_MEDIA_TYPE:
        return DocumentKind.PDF
    if ext in IMAGE_EXTS or media_type.startswith("image/"):
        return DocumentKind.IMAGE
    raise ExtractionFailure(f"Unsupported file type: {filename or media_type or '(unknown)'}")


def _resolve_lang(lang: Optional[str]) -> str:
    return lang or os.getenv("OCR_LANG") or DEFAULT_OCR_LANG


class TesseractEngine:
    """
    One OCR session. Obtain it through ``ocr_engine()`` so it is always
    released; a released engine refuses further work.
    """

    def __init__(self, lang: str):
        self.lang = lang
        self._open = False

    def start(self):
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        # Fails fast when the tesseract binary is missing
        version = pytesseract.get_tesseract_version()
        logger.debug("Tesseract %s started (lang=%s)", version, self.lang)
        self._open = True

    def terminate(self):
        if self._open:
            logger.debug("Tesseract session closed (lang=%s)", self.lang)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def recognize(self, img: "Image.Image") -> ExtractedText:
        """
        Run OCR with a single Tesseract pass.

        Text lines are rebuilt from the word boxes of ``image_to_data``;
        confidence is the mean word confidence (0-100).
        """
        if not self._open:
            raise ExtractionFailure("OCR engine used outside of its session")
        data = pytesseract.image_to_data(img, lang=self.lang, output_type=pytesseract.Output.DICT)
        return ExtractedText(text=_text_from_data(data), confidence=_mean_confidence(data))


def _text_from_data(data: Dict[str, List]) -> str:
    """Join recognized words line by line, in reading order."""
    lines: Dict[Tuple, List[str]] = {}
    keys = zip(data.get("block_num", []), data.get("par_num", []), data.get("line_num", []))
    for key, word in zip(keys, data.get("text", [])):
        word = str(word).strip()
        if word:
            lines.setdefault(key, []).append(word)
    return "\n".join(" ".join(words) for words in lines.values())


def _mean_confidence(data: Dict[str, List]) -> float:
    confidences = []
    for conf in data.get("conf", []):
        try:
            value = float(conf)
        except (TypeError, ValueError):
            continue
        # Tesseract reports -1 for boxes that are not words
        if value >= 0:
            confidences.append(value)
    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return round(confidence, 2)


@contextmanager
def ocr_engine(lang: Optional[str] = None) -> Iterator[TesseractEngine]:
    """Acquire an OCR engine for a single call and release it on every exit path."""
    engine = TesseractEngine(_resolve_lang(lang))
    try:
        engine.start()
        yield engine
    finally:
        engine.terminate()


def normalize_image(img: "Image.Image") -> "Image.Image":
    """Auto-orient, grayscale, stretch contrast and sharpen before OCR."""
    img = ImageOps.exif_transpose(img)
    if img.mode != "L":
        img = img.convert("L")
    img = ImageOps.autocontrast(img)
    return img.filter(ImageFilter.SHARPEN)


def ocr_image_to_text(data: bytes, lang: Optional[str] = None) -> ExtractedText:
    """OCR raw image bytes to text and confidence."""
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = normalize_image(src)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ExtractionFailure(f"Unreadable image: {e}") from e

    try:
        with ocr_engine(lang) as engine:
            return engine.recognize(img)
    except ExtractionFailure:
        raise
    except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, RuntimeError, OSError) as e:
        raise ExtractionFailure(f"OCR engine failed: {e}") from e


def pdf_to_text(data: bytes) -> ExtractedText:
    """Extract the embedded text layer of a PDF using PyMuPDF."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        # PyMuPDF raises its own FileDataError / RuntimeError family here
        raise ExtractionFailure(f"Unreadable PDF: {e}") from e
    try:
        if doc.page_count == 0:
            raise ExtractionFailure("Unreadable PDF: no pages")
        chunks = [page.get_text() for page in doc]
    except ExtractionFailure:
        raise
    except Exception as e:
        raise ExtractionFailure(f"Could not read PDF text: {e}") from e
    finally:
        doc.close()
    return ExtractedText(text="\n".join(chunks), confidence=None)


def extract_text(data: bytes, kind: Union[DocumentKind, str], lang: Optional[str] = None) -> ExtractedText:
    """
    Convert raw document bytes into plain text.

    Images go through normalization and OCR and carry a confidence score;
    PDFs only have their text layer read and carry no confidence.

    Raises:
        ExtractionFailure: unsupported kind, unreadable input or OCR error
    """
    try:
        kind = DocumentKind(kind)
    except ValueError as e:
        raise ExtractionFailure(f"Unsupported document kind: {kind}") from e

    if kind is DocumentKind.IMAGE:
        return ocr_image_to_text(data, lang=lang)
    return pdf_to_text(data)
