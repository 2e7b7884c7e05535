"""MIME-dispatched plain text extraction for fetched file bytes."""

import io
from dataclasses import dataclass

import docx
from pypdf import PdfReader

from shared.helper.HelperConfig import HelperConfig
from shared.pipeline.errors import UnsupportedMimeTypeError


MAX_TEXT_CHARS = 100_000
TRUNCATION_WARNING = "Warning: File truncated due to 100k character size limit."

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_GOOGLE_DOC = "application/vnd.google-apps.document"
MIME_GOOGLE_SHEET = "application/vnd.google-apps.spreadsheet"
MIME_GOOGLE_SLIDES = "application/vnd.google-apps.presentation"

# workspace-native documents have no binary content and must be exported
EXPORT_MIME_MAP: dict[str, str] = {
    MIME_GOOGLE_DOC: "text/plain",
    MIME_GOOGLE_SHEET: "text/csv",
    MIME_GOOGLE_SLIDES: "text/plain",
}

_DECODABLE_APPLICATION_TYPES = {"application/json", "application/csv"}


def is_workspace_native(mime_type: str) -> bool:
    return mime_type.startswith("application/vnd.google-apps.")


def export_target_mime(mime_type: str) -> str:
    return EXPORT_MIME_MAP.get(mime_type, "text/plain")


@dataclass(frozen=True)
class ExtractedText:
    text: str
    truncated: bool = False

    @property
    def warning(self) -> str | None:
        return TRUNCATION_WARNING if self.truncated else None


def truncate_text(text: str, limit: int = MAX_TEXT_CHARS) -> ExtractedText:
    if len(text) > limit:
        return ExtractedText(text=text[:limit], truncated=True)
    return ExtractedText(text=text)


class TextExtractor:
    """Turns downloaded or exported bytes into plain text."""

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()

    def extract(self, data: bytes, mime_type: str, log_prefix: str = "") -> ExtractedText:
        """Extract and truncate the text of a file.

        Args:
            data (bytes): Raw file content. For workspace-native files, the exported content.
            mime_type (str): The MIME type of ``data`` (the export target for exported files).
            log_prefix (str): Prefix for log lines, usually the job and file name.

        Returns:
            ExtractedText: The text, cut at 100,000 characters.

        Raises:
            UnsupportedMimeTypeError: If no extractor handles ``mime_type``.
        """
        self.logging.debug("%s Extracting mime_type=%s size=%d bytes", log_prefix, mime_type, len(data))
        text = self._extract_raw(data, mime_type, log_prefix)
        result = truncate_text(text)
        if result.truncated:
            self.logging.warning("%s Text truncated from %d to %d characters.", log_prefix, len(text), MAX_TEXT_CHARS)
        return result

    def _extract_raw(self, data: bytes, mime_type: str, log_prefix: str) -> str:
        if mime_type == MIME_PDF:
            return self._extract_pdf(data, log_prefix)
        if mime_type == MIME_DOCX:
            return self._extract_docx(data, log_prefix)
        if mime_type.startswith("text/") or mime_type in _DECODABLE_APPLICATION_TYPES:
            text = data.decode("utf-8", errors="replace")
            self.logging.debug("%s Decoded plain text, length=%d", log_prefix, len(text))
            return text
        raise UnsupportedMimeTypeError(mime_type)

    def _extract_pdf(self, data: bytes, log_prefix: str) -> str:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        text = "\n".join(pages)
        self.logging.info("%s PDF extracted, pages=%d length=%d", log_prefix, len(pages), len(text))
        if not text.strip():
            self.logging.warning("%s PDF produced empty text, possibly a scanned image-only document.", log_prefix)
            return ""
        return text

    def _extract_docx(self, data: bytes, log_prefix: str) -> str:
        document = docx.Document(io.BytesIO(data))
        text = "\n".join(paragraph.text for paragraph in document.paragraphs)
        self.logging.info("%s DOCX extracted, length=%d", log_prefix, len(text))
        return text
