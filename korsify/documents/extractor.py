"""Text extraction for uploaded source documents (PDF, DOCX, TXT, MD)."""
import io
import os
import re
import zipfile
from typing import List
from xml.etree import ElementTree

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from korsify.guardrails.errors import DocumentExtractionError

ALLOWED_EXTENSIONS = (".pdf", ".docx", ".txt", ".md")

_WORD_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def file_extension(file_name: str) -> str:
    return os.path.splitext(file_name or "")[1].lower()


def is_supported(file_name: str) -> bool:
    """Return True if the file extension is one we can extract text from.
    Legacy binary .doc is not supported; creators must save it as .docx."""
    return file_extension(file_name) in ALLOWED_EXTENSIONS


def _extract_pdf(content: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
    except (PdfReadError, ValueError, KeyError) as e:
        raise DocumentExtractionError(f"Failed to parse PDF: {e}") from e
    return "\n\n".join(p for p in pages if p)


def _extract_docx(content: bytes) -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as zf:
            xml = zf.read("word/document.xml")
    except (zipfile.BadZipFile, KeyError) as e:
        raise DocumentExtractionError(f"Failed to parse DOCX: {e}") from e

    try:
        root = ElementTree.fromstring(xml)
    except ElementTree.ParseError as e:
        raise DocumentExtractionError(f"Failed to parse DOCX: {e}") from e
    paragraphs: List[str] = []
    for para in root.iter(f"{_WORD_NS}p"):
        text = "".join(node.text or "" for node in para.iter(f"{_WORD_NS}t"))
        if text.strip():
            paragraphs.append(text.strip())
    return "\n\n".join(paragraphs)


def extract_text(content: bytes, file_name: str) -> str:
    """Extract plain text from a document's bytes based on its extension. Returns normalized text (no runs of blank lines).
    Raises DocumentExtractionError for unsupported types, unreadable files, or files with no extractable text."""
    ext = file_extension(file_name)
    if ext == ".pdf":
        text = _extract_pdf(content)
    elif ext == ".docx":
        text = _extract_docx(content)
    elif ext in (".txt", ".md"):
        text = content.decode("utf-8", errors="replace")
    else:
        raise DocumentExtractionError(f"Unsupported file type: {ext or file_name}")

    text = _BLANK_LINES_RE.sub("\n\n", text.replace("\r\n", "\n")).strip()
    if not text:
        raise DocumentExtractionError(f"{file_name} contains no extractable text")
    return text


def extract_file(path: str, file_name: str) -> str:
    """Read a stored upload from disk and extract its text."""
    try:
        with open(path, "rb") as f:
            content = f.read()
    except OSError as e:
        raise DocumentExtractionError(f"Stored file for {file_name} is unavailable") from e
    return extract_text(content, file_name)


def truncate_for_prompt(text: str, max_chars: int) -> str:
    """Cut text to max_chars at a paragraph boundary when possible, so prompts stay within the model context."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    boundary = cut.rfind("\n\n")
    if boundary > max_chars // 2:
        cut = cut[:boundary]
    return cut.rstrip()
