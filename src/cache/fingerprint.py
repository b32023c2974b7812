# src/cache/fingerprint.py - v1
"""Context fingerprinting for prompt caching.

A fingerprint summarizes a prompt together with its conversational
ancestry (depth, recent branches, dominant topics, coarse sentiment) so
that the same question asked in the same kind of conversation maps to the
same key. All functions here are pure.
"""

from __future__ import annotations

import re
import string
from collections import Counter
from typing import Sequence

from resilientai.cache.models import ConversationNode

ROOT_SIGNATURE = "root"
SEGMENT_SEPARATOR = "_"

STOP_WORDS = frozenset(
    {
        "the", "and", "that", "this", "with", "from", "they", "have", "been",
        "were", "said", "each", "which", "their", "could", "should", "would",
        "there", "these", "those", "about", "other", "because", "where",
    }
)
POSITIVE_WORDS = ("good", "great", "excellent", "amazing", "love", "fantastic")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "hate", "problem", "issue")

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(prompt: str, max_length: int = 200) -> str:
    """Lower-case, strip punctuation, collapse whitespace, truncate."""
    text = _PUNCTUATION.sub("", prompt.lower())
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:max_length]


def _ancestry_text(nodes: Sequence[ConversationNode]) -> str:
    return " ".join(f"{n.prompt} {n.ai_response}" for n in nodes).lower()


def extract_key_topics(nodes: Sequence[ConversationNode], limit: int = 5) -> list[str]:
    """Most frequent significant words across the given exchanges.

    Significant means longer than four characters and not a stop word.
    Ties keep first-seen order.
    """
    words = _PUNCTUATION.sub(" ", _ancestry_text(nodes)).split()
    counts = Counter(w for w in words if len(w) > 4 and w not in STOP_WORDS)
    return [word for word, _ in counts.most_common(limit)]


def chain_sentiment(nodes: Sequence[ConversationNode]) -> str:
    """Coarse sentiment bucket: positive, negative or neutral."""
    text = _ancestry_text(nodes)
    score = sum(text.count(w) for w in POSITIVE_WORDS)
    score -= sum(text.count(w) for w in NEGATIVE_WORDS)
    if score > 0:
        return "positive"
    if score < 0:
        return "negative"
    return "neutral"


def _token(value: str) -> str:
    # Segment values must not contain the separator.
    return value.replace(SEGMENT_SEPARATOR, "").translate(
        str.maketrans("", "", string.whitespace)
    )


def context_signature(ancestry: Sequence[ConversationNode] | None) -> str:
    """Build the ancestry signature, e.g. ``d3_bexplorationdeepen_tcolorpalette_spositive``."""
    if not ancestry:
        return ROOT_SIGNATURE

    branches = [_token(n.branch or "exploration") for n in ancestry]
    topics = [_token(t) for t in extract_key_topics(ancestry)]
    return SEGMENT_SEPARATOR.join(
        [
            f"d{len(ancestry)}",
            f"b{''.join(branches[-2:])}",
            f"t{''.join(topics[:2])}",
            f"s{chain_sentiment(ancestry)}",
        ]
    )


def hash_key(key: str) -> str:
    """32-bit rolling string hash rendered in base 36."""
    h = 0
    for char in key:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return _to_base36(abs(h))


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def compute_fingerprint(
    prompt: str,
    ancestry: Sequence[ConversationNode] | None = None,
    focus: str = "creative",
    max_length: int = 200,
) -> str:
    """Derive the cache key for a prompt in its conversational context.

    Collisions are possible; entries keep the normalized prompt so
    contextual scoring can tell colliding prompts apart.
    """
    composite = f"{focus}:{context_signature(ancestry)}:{normalize_prompt(prompt, max_length)}"
    return hash_key(composite)
