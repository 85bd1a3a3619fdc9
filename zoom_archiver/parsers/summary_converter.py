"""Conversion of Zoom AI Companion meeting summaries."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from zoom_archiver.models import ActionItem, NormalizedTranscript, Segment

logger = logging.getLogger(__name__)

# Zoom already curated these, so they rank above heuristic matches
NEXT_STEP_CONFIDENCE = 0.95

# Summary sections get synthetic timestamps this many minutes apart
SECTION_INTERVAL_MINUTES = 5


@dataclass
class ConvertedSummary:
    transcript: NormalizedTranscript
    action_items: List[ActionItem] = field(default_factory=list)
    key_points: List[str] = field(default_factory=list)
    overview: Optional[str] = None


def section_timestamp(index: int) -> str:
    minutes = index * SECTION_INTERVAL_MINUTES
    return f"{minutes // 60:02d}:{minutes % 60:02d}:00"


def convert_summary(summary: Dict[str, Any]) -> ConvertedSummary:
    """Convert a ``meeting_summary`` payload into segments and action items.

    Each entry of ``summary_details`` becomes a segment spoken by its label,
    the labels become the key points, and ``next_steps`` become action items.
    """
    details = [d for d in summary.get("summary_details") or [] if isinstance(d, dict)]

    segments = [
        Segment(
            speaker=detail.get("label") or "Summary",
            timestamp=section_timestamp(index),
            text=(detail.get("summary") or "").strip(),
        )
        for index, detail in enumerate(details)
    ]

    action_items = [
        ActionItem(text=step.strip(), confidence=NEXT_STEP_CONFIDENCE)
        for step in summary.get("next_steps") or []
        if isinstance(step, str) and step.strip()
    ]

    logger.debug(f"Converted AI summary: {len(segments)} sections, {len(action_items)} next steps")

    return ConvertedSummary(
        transcript=NormalizedTranscript(
            segments=segments,
            raw_text="\n\n".join(s.text for s in segments),
        ),
        action_items=action_items,
        key_points=[detail.get("label") for detail in details if detail.get("label")],
        overview=summary.get("summary_overview") or None,
    )
