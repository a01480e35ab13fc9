"""Keyword heuristics for classifying deletion intent.

These run without the AI-backed parser, so they are the only deletion-scope
logic that works offline. Phrases are matched on word boundaries: "call mom"
does not contain the series indicator "all".
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from schemas import DeletionScopeType

SINGLE_INDICATORS = [
    'today', 'tomorrow', 'this morning', 'this evening', 'tonight',
    'this occurrence', 'just today', 'only today', 'just this time'
]

SERIES_INDICATORS = [
    'all', 'entire', 'complete', 'whole', 'every', 'series',
    'all of them', 'everything', 'permanently'
]

FROM_DATE_INDICATORS = [
    'from now on', 'from tomorrow', 'from next week', 'onwards',
    'going forward', 'in the future', 'from today onwards'
]

# Markers behind Match.suggested_scope, checked in this order. A single-day
# marker wins even inside a from_date phrase ("from today onwards").
SUGGESTION_MARKERS = [
    (DeletionScopeType.SINGLE, ('today', 'tomorrow', 'this')),
    (DeletionScopeType.SERIES, ('all', 'entire')),
    (DeletionScopeType.FROM_DATE, ('onwards', 'from')),
]


@dataclass
class IntentAnalysis:
    scope: str  # 'single' | 'series' | 'from_date' | 'ambiguous'
    confidence: str  # 'high' | 'medium' | 'low'
    reasons: List[str] = field(default_factory=list)


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word, case-insensitive phrase test."""
    return re.search(r'\b' + re.escape(phrase.lower()) + r'\b', text.lower()) is not None


def analyze_deletion_intent(description: str, time_context: Optional[str] = None) -> IntentAnalysis:
    """Classify a deletion request as single, series, from_date or ambiguous.

    Each indicator found scores 2 for its scope; single-occurrence indicators
    are also looked up in the time context. The best score wins, ties
    resolve single > series > from_date.
    """
    description = description or ''
    time_context = time_context or ''
    reasons: List[str] = []

    single_score = 0
    for indicator in SINGLE_INDICATORS:
        if contains_phrase(description, indicator) or contains_phrase(time_context, indicator):
            single_score += 2
            reasons.append(f'Contains single occurrence indicator: "{indicator}"')

    series_score = 0
    for indicator in SERIES_INDICATORS:
        if contains_phrase(description, indicator):
            series_score += 2
            reasons.append(f'Contains series indicator: "{indicator}"')

    from_date_score = 0
    for indicator in FROM_DATE_INDICATORS:
        if contains_phrase(description, indicator):
            from_date_score += 2
            reasons.append(f'Contains from-date indicator: "{indicator}"')

    max_score = max(single_score, series_score, from_date_score)
    if max_score == 0:
        return IntentAnalysis('ambiguous', 'low', ['No clear deletion scope indicators found'])

    if single_score == max_score:
        scope = DeletionScopeType.SINGLE.value
    elif series_score == max_score:
        scope = DeletionScopeType.SERIES.value
    else:
        scope = DeletionScopeType.FROM_DATE.value

    confidence = 'high' if max_score >= 4 else 'medium' if max_score >= 2 else 'low'
    return IntentAnalysis(scope, confidence, reasons)


def suggest_scope(description: str, time_context: Optional[str] = None) -> Optional[DeletionScopeType]:
    """Scope hint attached to recurring matches, or None when nothing points anywhere."""
    text = f"{description or ''} {time_context or ''}"
    for scope, markers in SUGGESTION_MARKERS:
        if any(contains_phrase(text, marker) for marker in markers):
            return scope
    return None
