"""
Text processing for retrieval: cleaning, tokenizing, previews and classification.

Tokenization feeds the structured search tables, so title tokens and query
tokens must go through the same function or scoring silently degrades.
"""

import re
import unicodedata

from workspace_rag.core.models import DocumentType

# Letters and digits in any script; underscores split tokens.
_TOKEN_RE = re.compile(r"[^\W_]+")

STOP_WORDS: frozenset[str] = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "does", "for",
    "from", "how", "i", "in", "is", "it", "me", "my", "of", "on", "or", "our",
    "the", "to", "we", "what", "when", "where", "which", "who", "why", "with",
    "you", "your", "about", "tell", "find", "show", "please",
})

# Checked in order; first type with a matching term wins.
DOCUMENT_TYPE_TERMS: tuple[tuple[DocumentType, tuple[str, ...]], ...] = (
    (DocumentType.POLICY, ("policy", "guideline", "rule")),
    (DocumentType.PROCEDURE, ("procedure", "process", "how to")),
    (DocumentType.CONTACT_LIST, ("contact", "email", "phone")),
    (DocumentType.FORM, ("form", "template", "fill")),
)

_TERM_PREFIX_RE = re.compile(r"^\s*(search terms|keywords|key terms)\s*:?\s*", re.IGNORECASE)


def clean_text(text: str) -> str:
    """
    Normalize and clean raw page text.

    Collapses runs of blank lines and consecutive duplicate lines, and applies
    NFKC so the LLM sees consistent characters.
    """
    if not text or not text.strip():
        return ""
    text = unicodedata.normalize("NFKC", text)
    lines = [line.rstrip() for line in text.splitlines()]
    deduped: list[str] = []
    for line in lines:
        if deduped and deduped[-1] == line and line.strip():
            continue
        deduped.append(line)
    result: list[str] = []
    for line in deduped:
        if not line.strip():
            if result and result[-1] != "":
                result.append("")
        else:
            result.append(line)
    return "\n".join(result).strip()


def tokenize(text: str, *, drop_stop_words: bool = True) -> list[str]:
    """
    Case-folded word tokens in order, duplicates kept.

    Single ASCII characters are dropped; a lone non-ASCII letter (one CJK
    ideograph) is kept.
    """
    if not text:
        return []
    normalized = unicodedata.normalize("NFKC", text).casefold()
    tokens = [t for t in _TOKEN_RE.findall(normalized) if len(t) >= 2 or not t.isascii()]
    if drop_stop_words:
        tokens = [t for t in tokens if t not in STOP_WORDS]
    return tokens


def normalize_phrase(text: str) -> str:
    """Tokens joined by single spaces; used for whole-phrase title matching."""
    return " ".join(tokenize(text, drop_stop_words=False))


def build_preview(title: str, path: tuple[str, ...], type_label: str, max_chars: int = 200) -> str:
    """Short index-derived snippet: breadcrumb plus type. Never touches the body."""
    crumbs = " > ".join([*path, title or "Untitled"])
    preview = f"{crumbs} ({type_label})"
    return truncate(preview, max_chars)


def truncate(text: str, max_chars: int, marker: str = "...") -> str:
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    cut = max(max_chars - len(marker), 0)
    return text[:cut].rstrip() + marker


def classify_document_type(content: str) -> DocumentType:
    """Keyword classification of a page body."""
    lowered = (content or "").lower()
    for doc_type, terms in DOCUMENT_TYPE_TERMS:
        if any(term in lowered for term in terms):
            return doc_type
    return DocumentType.GENERAL_INFO


def strip_term_prefixes(text: str) -> str:
    """Remove 'Search terms:' style lead-ins and outer quotes from an LLM rewrite."""
    if not text:
        return ""
    first_block = text.strip().split("\n\n")[0].strip()
    stripped = _TERM_PREFIX_RE.sub("", first_block).strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in "\"'":
        stripped = stripped[1:-1].strip()
    return stripped
