"""Heuristic AI-likeness scoring from word and sentence statistics."""

from __future__ import annotations

import math
import re
from collections import Counter

from .models import TextAnalysis

WORD_RE = re.compile(r"\b\w+\b", re.ASCII)
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]?")
QUOTES_RE = re.compile(r"[\"'`]")

WEIGHTS = (0.20, 0.25, 0.20, 0.20, 0.15)


def _round(value: float) -> int:
    """Round half up."""
    return math.floor(value + 0.5)


def _repeats(counts: Counter) -> int:
    return sum(c - 1 for c in counts.values() if c > 1)


def overall_score(metrics: list[int]) -> int:
    if not metrics:
        return 0
    return _round(sum(m * w for m, w in zip(metrics, WEIGHTS)))


def analyze_text(text: str) -> TextAnalysis:
    """Score `text` on five 0-100 metrics, higher meaning more machine-like.

    - perplexity: grows with mean word length
    - burstiness: uniform sentence lengths score high
    - repetition: share of repeated words
    - bigram_repetition: share of repeated word pairs
    - regularity: low sentence-length spread relative to the mean
    """
    cleaned = QUOTES_RE.sub("", text)
    tokens = WORD_RE.findall(cleaned)
    sentences = SENTENCE_RE.findall(cleaned) or [cleaned]

    avg_word_len = sum(len(w) for w in tokens) / max(1, len(tokens))
    sent_lens = [len(WORD_RE.findall(s)) for s in sentences]
    mean = sum(sent_lens) / max(1, len(sent_lens))

    words = [w.lower() for w in tokens]
    repetition_ratio = _repeats(Counter(words)) / len(words) if words else 0.0

    bigrams = Counter(f"{a} {b}" for a, b in zip(words, words[1:]))
    bigram_ratio = _repeats(bigrams) / max(1, len(words) - 1) if words else 0.0

    variance = sum((n - mean) ** 2 for n in sent_lens) / max(1, len(sent_lens))
    std = math.sqrt(variance)
    norm_var = min(1.0, variance / max(1.0, mean**2))

    metrics = [
        _round(min(100.0, max(0.0, (avg_word_len - 4) * 25 + 20))),
        _round((1 - norm_var) * 100),
        _round(min(1.0, repetition_ratio) * 100),
        _round(min(1.0, bigram_ratio) * 100),
        _round((1 - std / max(1.0, mean)) * 100),
    ]
    return TextAnalysis(
        perplexity=metrics[0],
        burstiness=metrics[1],
        repetition=metrics[2],
        bigram_repetition=metrics[3],
        regularity=metrics[4],
        overall=overall_score(metrics),
    )
