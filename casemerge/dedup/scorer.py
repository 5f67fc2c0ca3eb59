"""Composite similarity between two normalized test-case records.

This module computes a float 0-1 similarity for a pair of records as a
weighted sum of four independent sub-scores, each already in [0, 1]:

    50% title     — normalized edit-distance ratio on the case-folded title
    30% steps     — token LCS ratio over the step descriptions, in order
    10% category  — 1.0 when the categories match after case-folding
    10% tags      — Jaccard overlap of the canonical tag sets

Weights are configuration-time settings (Settings.weight_*), overridable per
call with a ScoreWeights model.

Absence policy: a dimension that is empty on exactly one side scores 0.0 and
stays in the weighted sum, so a record with no steps is never "identical" in
steps to one that has them. A dimension empty on both sides agrees and scores
1.0, which keeps score(a, a) == 1.0 for every record.

The composite is symmetric (every sub-score is) and rounded to 6 decimals so
that float summation order can never break reflexivity or symmetry.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from rapidfuzz import fuzz
from rapidfuzz.distance import Indel

from casemerge.records.fingerprint import fingerprint
from casemerge.records.models import Record, ScoreBreakdown, ScoreWeights, SimilarityScore
from casemerge.records.normalizer import comparison_text, ensure_valid

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+")

# Decimal places kept on composite and sub-scores
_PRECISION = 6


def tokenize(text: str) -> list[str]:
    """Split text into case-folded word tokens, preserving order."""
    return _TOKEN.findall(text.casefold())


def title_similarity(a: Record, b: Record) -> float:
    key_a, key_b = a.comparison_key, b.comparison_key
    if not key_a and not key_b:
        return 1.0
    if not key_a or not key_b:
        return 0.0
    return fuzz.ratio(key_a, key_b) / 100.0


def step_similarity(a: Record, b: Record) -> float:
    """Order-sensitive token overlap across the concatenated step descriptions.

    Uses the Indel (LCS-based) normalized similarity on token sequences:
    2 * LCS / (len_a + len_b). An inserted step lowers the score in
    proportion to its length instead of zeroing it, while reordering the
    same tokens is penalized.
    """
    tokens_a, tokens_b = tokenize(a.step_text), tokenize(b.step_text)
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return Indel.normalized_similarity(tokens_a, tokens_b)


def category_similarity(a: Record, b: Record) -> float:
    cat_a, cat_b = comparison_text(a.category), comparison_text(b.category)
    if not cat_a and not cat_b:
        return 1.0
    return 1.0 if cat_a == cat_b else 0.0


def tag_similarity(a: Record, b: Record) -> float:
    tags_a, tags_b = set(a.tags), set(b.tags)
    if not tags_a and not tags_b:
        return 1.0
    return len(tags_a & tags_b) / len(tags_a | tags_b)


def score(a: Record, b: Record, weights: Optional[ScoreWeights] = None) -> SimilarityScore:
    """Compute the composite similarity of two records.

    Parameters
    ----------
    a, b : Record
        Normalized records. Argument order does not matter.
    weights : ScoreWeights, optional
        Per-dimension weights. Defaults to the configured Settings weights.

    Returns
    -------
    SimilarityScore
        value in [0.0, 1.0], the unweighted per-dimension breakdown, and
        `exact`, True when both records share a content fingerprint.

    Raises
    ------
    InvalidRecord
        If either record has a blank id or title.
    """
    ensure_valid(a)
    ensure_valid(b)
    if weights is None:
        weights = ScoreWeights.from_settings()

    breakdown = ScoreBreakdown(
        title=round(title_similarity(a, b), _PRECISION),
        steps=round(step_similarity(a, b), _PRECISION),
        category=category_similarity(a, b),
        tags=round(tag_similarity(a, b), _PRECISION),
    )

    raw = (
        weights.title * breakdown.title
        + weights.steps * breakdown.steps
        + weights.category * breakdown.category
        + weights.tags * breakdown.tags
    )

    # --- Clamp to [0.0, 1.0]
    value = round(max(0.0, min(1.0, raw)), _PRECISION)

    exact = value == 1.0 and fingerprint(a) == fingerprint(b)
    return SimilarityScore(value=value, breakdown=breakdown, exact=exact)


def similarity_band(value: float) -> str:
    """Classify a score into a display band for review UIs.

    Bands are presentation only; the pipeline classifies with Thresholds.

    Returns:
        One of "identical", "very_high", "high", "medium", "low".
    """
    from casemerge.config import settings  # lazy import: read current settings

    if value >= settings.exact_threshold:
        return "identical"
    if value >= settings.display_band_high:
        return "very_high"
    if value >= settings.review_threshold:
        return "high"
    if value >= settings.display_band_low:
        return "medium"
    return "low"
