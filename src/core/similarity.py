# src/core/similarity.py - v1
"""Similarity scores used for contextual cache matching.

Prompt similarity is token-set Jaccard on normalized prompts. Context
similarity compares ancestry signatures segment by segment: an identical
segment scores 1, a segment of the same category (same leading tag
character) with a different value scores 0.5.
"""

from __future__ import annotations

PROMPT_WEIGHT = 0.7
CONTEXT_WEIGHT = 0.3


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """Jaccard similarity of whitespace-separated token sets.

    Returns:
        Value in [0, 1]; 0.0 when both texts are empty.
    """
    words_a = set(text_a.split())
    words_b = set(text_b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def context_similarity(signature_a: str, signature_b: str, separator: str = "_") -> float:
    """Piecewise similarity of two ancestry signatures."""
    if signature_a == signature_b:
        return 1.0

    parts_a = signature_a.split(separator)
    parts_b = signature_b.split(separator)
    total = max(len(parts_a), len(parts_b))

    matches = 0.0
    for part_a, part_b in zip(parts_a, parts_b):
        if part_a == part_b:
            matches += 1.0
        elif part_a[:1] and part_a[:1] == part_b[:1]:
            matches += 0.5
    return matches / total


def combined_similarity(prompt_score: float, context_score: float) -> float:
    """Weighted blend favouring the prompt over its context."""
    return PROMPT_WEIGHT * prompt_score + CONTEXT_WEIGHT * context_score
