"""
Duplicate upload check by content hash.
Re-uploading the same file returns the existing document instead of storing a second copy.
"""
import hashlib
from typing import Optional

from korsify.storage.store import CourseStore, Document


def content_hash(content: bytes) -> str:
    """SHA-256 hex digest of an uploaded file's bytes."""
    return hashlib.sha256(content or b"").hexdigest()


def get_existing_document(content_hash_hex: str, store: CourseStore) -> Optional[Document]:
    """Return the document already stored with this content hash, else None.
    Why available: Upload flow checks this first so duplicate uploads are idempotent."""
    return store.find_document_by_hash(content_hash_hex)
