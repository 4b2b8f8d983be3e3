"""Local Tesseract OCR, used as the last entry of the provider fallback.

PDF pages are rendered to images with pdf2image before recognition.
"""

import io

import numpy as np
import pytesseract
from pdf2image import convert_from_bytes
from PIL import Image

from docscan.utils.logger import get_logger

from .results import OCRResult

logger = get_logger(__name__)

PROVIDER_NAME = "tesseract"


class LocalOCREngine:
    """Wrapper around Tesseract for whole-document text extraction.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        lang: Tesseract language code.
        dpi: Resolution for PDF rendering.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        lang: str = "eng",
        dpi: int = 300,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.lang = lang
        self.dpi = dpi

    def _load_pages(self, content: bytes, mime_type: str) -> list[Image.Image]:
        try:
            if mime_type == "application/pdf" or content[:4] == b"%PDF":
                return convert_from_bytes(content, dpi=self.dpi)
            return [Image.open(io.BytesIO(content))]
        except Exception as exc:
            raise RuntimeError(f"Could not load document for local OCR: {exc}") from exc

    def _page_text(self, page: Image.Image) -> tuple[str, list[float]]:
        data = pytesseract.image_to_data(
            page, lang=self.lang, output_type=pytesseract.Output.DICT
        )
        lines: dict[tuple[int, int], list[str]] = {}
        scores: list[float] = []
        for i, word in enumerate(data["text"]):
            conf = float(data["conf"][i])
            word = word.strip()
            if conf > 0 and word:
                key = (data["block_num"][i], data["line_num"][i])
                lines.setdefault(key, []).append(word)
                scores.append(conf / 100.0)
        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        return text, scores

    def extract(self, content: bytes, mime_type: str) -> OCRResult:
        """Recognize every page and join the text with blank lines.

        Raises:
            RuntimeError: If the document cannot be decoded or Tesseract fails.
        """
        pages = self._load_pages(content, mime_type)
        texts: list[str] = []
        scores: list[float] = []
        try:
            for page in pages:
                text, page_scores = self._page_text(page)
                texts.append(text)
                scores.extend(page_scores)
        except pytesseract.TesseractError as exc:
            raise RuntimeError(f"Tesseract failed: {exc}") from exc

        confidence = float(np.mean(scores)) if scores else 0.0
        logger.info(
            "Local OCR read %d pages, %d words, confidence %.2f",
            len(pages),
            len(scores),
            confidence,
        )
        return OCRResult(
            text="\n\n".join(t for t in texts if t),
            confidence=confidence,
            provider=PROVIDER_NAME,
        )
