import re
from typing import List, Set

from korsify.storage.store import SourceReference

CITATION_RE = re.compile(r"\[(\d+)\]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")

SENTENCE_LOOKBACK = 200
CONTEXT_BEFORE = 300
CONTEXT_AFTER = 100


def citation_numbers(content: str) -> List[int]:
    """Return citation marker numbers ([1], [2], ...) in order of first appearance, without duplicates."""
    seen: Set[int] = set()
    out: List[int] = []
    for m in CITATION_RE.finditer(content or ""):
        n = int(m.group(1))
        if n not in seen:
            seen.add(n)
            out.append(n)
    return out


def _cited_text(content: str, marker_start: int) -> str:
    """The sentence fragment right before a marker (falls back to the previous sentence, then to the raw look-back window)."""
    before = content[max(0, marker_start - SENTENCE_LOOKBACK) : marker_start]
    sentences = _SENTENCE_SPLIT_RE.split(before)
    last = sentences[-1].strip() if sentences else ""
    if last:
        return last
    if len(sentences) >= 2 and sentences[-2].strip():
        return sentences[-2].strip()
    return before.strip()


def extract_source_references(content: str, document_id: str, document_name: str) -> List[SourceReference]:
    """Turn each distinct [n] marker in lesson content into a SourceReference: the cited sentence plus a context window (300 chars before, 100 after).
    Why available: Learners click a citation in a lesson and see which excerpt of the source document backs it."""
    refs: List[SourceReference] = []
    seen: Set[int] = set()
    for m in CITATION_RE.finditer(content or ""):
        n = int(m.group(1))
        if n in seen:
            continue
        seen.add(n)

        ctx_start = max(0, m.start() - CONTEXT_BEFORE)
        ctx_end = min(len(content), m.start() + CONTEXT_AFTER)
        refs.append(
            SourceReference(
                id=f"ref-{document_id}-{n}",
                document_id=document_id,
                document_name=document_name,
                text=_cited_text(content, m.start()) or f"Reference {n}",
                context=content[ctx_start:ctx_end].strip(),
                start_offset=ctx_start,
                end_offset=ctx_end,
            )
        )
    return refs


def prune_source_references(refs: List[SourceReference], content: str) -> List[SourceReference]:
    """Keep only references whose [n] marker still appears in content (after a creator edits a lesson)."""
    remaining = set(citation_numbers(content))
    return [r for r in refs if r.id.rsplit("-", 1)[-1].isdigit() and int(r.id.rsplit("-", 1)[-1]) in remaining]
