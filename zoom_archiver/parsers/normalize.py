"""Single entry point turning either kind of meeting content into one shape."""

import functools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from zoom_archiver.models import ActionItem, NormalizedTranscript
from zoom_archiver.parsers.action_items import extract_action_items
from zoom_archiver.parsers.summary_converter import convert_summary
from zoom_archiver.parsers.transcript_parser import parse_transcript


@dataclass
class RawTranscript:
    """Caption file text downloaded from a cloud recording."""

    content: str
    file_extension: Optional[str] = None


@dataclass
class AiSummary:
    """``meeting_summary`` payload from Zoom AI Companion."""

    payload: Dict[str, Any]


@dataclass
class Normalized:
    transcript: NormalizedTranscript
    action_items: List[ActionItem] = field(default_factory=list)
    key_points: Optional[List[str]] = None
    overview: Optional[str] = None


@functools.singledispatch
def normalize(source, extract_action_items_enabled: bool = True) -> Normalized:
    """Normalize meeting content.

    Args:
        source: ``RawTranscript`` or ``AiSummary``.
        extract_action_items_enabled: Run the action item heuristics on
            transcripts. Summaries always keep their own next steps.

    Returns:
        Transcript, action items and, for summaries, key points and overview.
    """
    raise TypeError(f"Cannot normalize {type(source).__name__}")


@normalize.register
def _(source: RawTranscript, extract_action_items_enabled: bool = True) -> Normalized:
    transcript = parse_transcript(source.content, source.file_extension)
    action_items = extract_action_items(transcript) if extract_action_items_enabled else []
    return Normalized(transcript=transcript, action_items=action_items)


@normalize.register
def _(source: AiSummary, extract_action_items_enabled: bool = True) -> Normalized:
    converted = convert_summary(source.payload)
    return Normalized(
        transcript=converted.transcript,
        action_items=converted.action_items,
        key_points=converted.key_points,
        overview=converted.overview,
    )
