"""Heuristic action item extraction.

Everything here is a pure function over plain text so the patterns can be
tuned without touching the API or state code.
"""

import logging
import re
from typing import List, Optional

from zoom_archiver.models import UNKNOWN_SPEAKER, ActionItem, NormalizedTranscript

logger = logging.getLogger(__name__)

_RELATIVE_DAYS = r"monday|tuesday|wednesday|thursday|friday|saturday|sunday|today|tomorrow|next week|eow|eod"

ACTION_PATTERNS = [
    re.compile(r"\b(action item|action|todo|to-do|task|follow[- ]?up)\b", re.IGNORECASE),
    re.compile(r"\b(will|need to|should|must|have to|going to)\s+\w+", re.IGNORECASE),
    re.compile(rf"\b(by|before|until|due)\s+({_RELATIVE_DAYS})", re.IGNORECASE),
    re.compile(r"\b(responsible|owner|assigned to|assignee)\b", re.IGNORECASE),
    re.compile(r"\b(deadline|due date)\b", re.IGNORECASE),
]

# Names are matched case-sensitively; the surrounding keywords are not.
ASSIGNEE_PATTERNS = [
    re.compile(
        r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+(?i:will|should|needs?\s+to|is\s+responsible|is\s+assigned)\b"
    ),
    re.compile(r"(?i:assigned\s+to|owner:?|responsible:?)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"),
]

FIRST_PERSON_PATTERN = re.compile(r"\bI\s+(will|should|need to)\b", re.IGNORECASE)

DUE_DATE_PATTERNS = [
    re.compile(
        rf"\b(by|before|until|due)\s+({_RELATIVE_DAYS}|[0-9]{{1,2}}/[0-9]{{1,2}}|[A-Z][a-z]+\s+[0-9]{{1,2}})"
        # ordinal suffix is matched but not kept: "March 15th" -> "March 15"
        r"(?:st|nd|rd|th)?\b",
        re.IGNORECASE,
    ),
]

EXPLICIT_SECTION_PATTERN = re.compile(r"action items?:([^.]*(?:\.[^.]*){0,3})", re.IGNORECASE)
EXPLICIT_SPLIT_PATTERN = re.compile(r"[,;]|\band\b")

# Capitalized words that open sentences but are never assignees
NOT_A_NAME = {
    "I", "We", "You", "They", "He", "She", "It", "This", "That", "Someone",
    "Everyone", "Somebody", "Nobody", "Who", "What", "There",
}

MIN_PATTERN_MATCHES = 2
EXPLICIT_ITEM_CONFIDENCE = 0.8
MIN_EXPLICIT_ITEM_LENGTH = 10


def count_pattern_matches(text: str) -> int:
    """Count how many distinct trigger patterns match the text."""
    return sum(1 for pattern in ACTION_PATTERNS if pattern.search(text))


def extract_assignee(text: str, speaker: str = UNKNOWN_SPEAKER) -> Optional[str]:
    """Guess who owns an action item.

    Args:
        text: Segment text.
        speaker: Segment speaker, used for first-person statements.

    Returns:
        Assignee name or None.
    """
    for pattern in ASSIGNEE_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(1).strip()
            if name.split()[0] not in NOT_A_NAME:
                return name

    # "I will ..." belongs to whoever said it
    if FIRST_PERSON_PATTERN.search(text) and speaker != UNKNOWN_SPEAKER:
        return speaker

    return None


def extract_due_date(text: str) -> Optional[str]:
    """Return the due date phrase following by/before/until/due, if any."""
    for pattern in DUE_DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(2).strip()
    return None


def calculate_confidence(pattern_matches: int, has_assignee: bool, has_due_date: bool) -> float:
    """Score an action item between 0 and 1."""
    confidence = 0.3
    confidence += min(pattern_matches * 0.15, 0.45)
    if has_assignee:
        confidence += 0.15
    if has_due_date:
        confidence += 0.1
    return min(confidence, 1.0)


def extract_explicit_action_items(text: str) -> List[ActionItem]:
    """Pick up items listed after an "Action items:" header in free text."""
    match = EXPLICIT_SECTION_PATTERN.search(text)
    if not match or not match.group(1):
        return []

    fragments = (fragment.strip() for fragment in EXPLICIT_SPLIT_PATTERN.split(match.group(1).strip()))
    return [
        ActionItem(text=fragment, confidence=EXPLICIT_ITEM_CONFIDENCE)
        for fragment in fragments
        if len(fragment) > MIN_EXPLICIT_ITEM_LENGTH
    ]


def extract_action_items(transcript: NormalizedTranscript) -> List[ActionItem]:
    """Extract action items from a parsed transcript.

    Segments matching at least two trigger patterns become items; explicit
    "Action items:" lists in the raw text are appended after them. The two
    sources are not deduplicated against each other.

    Args:
        transcript: Normalized transcript.

    Returns:
        Action items in transcript order.
    """
    action_items: List[ActionItem] = []

    for segment in transcript.segments:
        match_count = count_pattern_matches(segment.text)
        if match_count < MIN_PATTERN_MATCHES:
            continue

        assignee = extract_assignee(segment.text, segment.speaker)
        due_date = extract_due_date(segment.text)
        action_items.append(
            ActionItem(
                text=segment.text.strip(),
                assignee=assignee,
                due_date=due_date,
                confidence=calculate_confidence(match_count, assignee is not None, due_date is not None),
            )
        )
        logger.debug(f"Found action item: {segment.text[:50]}...")

    action_items.extend(extract_explicit_action_items(transcript.raw_text))

    logger.info(f"Extracted {len(action_items)} action items")
    return action_items
