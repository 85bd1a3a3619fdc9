"""WebVTT/SRT transcript parser.

Both formats are read line by line with the same cue state machine::

    SEEKING_CUE -> READING_TIMESTAMP -> READING_TEXT -> (emit) -> SEEKING_CUE

WebVTT (what Zoom produces for cloud recording transcripts)::

    WEBVTT

    1
    00:00:00.000 --> 00:00:05.000
    Speaker Name: Text content

SRT::

    1
    00:00:00,000 --> 00:00:05,000
    Speaker Name: Text content
    that may continue on the next line
"""

import enum
import logging
import re
from typing import List, Optional, Tuple

from zoom_archiver.errors import ParseError
from zoom_archiver.models import UNKNOWN_SPEAKER, NormalizedTranscript, Segment

logger = logging.getLogger(__name__)

TIMESTAMP_SEPARATOR = "-->"
VTT_MARKER = "WEBVTT"

# Speaker prefixes longer than this are treated as part of the text
MAX_SPEAKER_LENGTH = 50

_TIMESTAMP_RE = re.compile(r"(?:(\d+):)?(\d{1,2}):(\d{2})")


class CueState(enum.Enum):
    SEEKING_CUE = "seeking_cue"
    READING_TIMESTAMP = "reading_timestamp"
    READING_TEXT = "reading_text"


def normalize_timestamp(timestamp: str) -> str:
    """Reduce a cue time to whole seconds, ``HH:MM:SS``.

    Accepts ``HH:MM:SS.mmm``, ``HH:MM:SS,mmm`` and the short WebVTT form ``MM:SS.mmm``.

    Raises:
        ParseError: If the value is not a cue time.
    """
    value = timestamp.strip().replace(",", ".").split(".")[0].strip()
    match = _TIMESTAMP_RE.fullmatch(value)
    if not match:
        raise ParseError(f"Invalid cue timestamp: {timestamp.strip()!r}")

    hours, minutes, seconds = match.group(1) or "0", match.group(2), match.group(3)
    return f"{int(hours):02d}:{int(minutes):02d}:{seconds}"


def split_speaker(line: str) -> Tuple[str, str]:
    """Split ``"Speaker Name: Text"`` into speaker and text.

    Returns:
        (speaker, text); speaker is "Unknown" when no prefix is found.
    """
    colon_index = line.find(":")

    if 0 < colon_index < MAX_SPEAKER_LENGTH:
        return line[:colon_index].strip(), line[colon_index + 1:].strip()

    return UNKNOWN_SPEAKER, line.strip()


class _CueParser:
    """Single-pass cue reader shared by both formats.

    With ``multiline`` (SRT) every text line up to the end of the cue is kept;
    otherwise (WebVTT) the first text line is the whole cue.
    """

    def __init__(self, multiline: bool):
        self.multiline = multiline
        self.state = CueState.SEEKING_CUE
        self.timestamp: Optional[str] = None
        self.lines: List[str] = []
        self.segments: List[Segment] = []
        # True from a cue's timestamp line until the blank line that ends it
        self.in_cue = False

    def feed(self, line: str) -> None:
        line = line.strip()

        if TIMESTAMP_SEPARATOR in line:
            timestamp = self._cue_start(line)
            if timestamp is not None:
                self._finalize()
                self.timestamp = timestamp
                self.state = CueState.READING_TIMESTAMP
                self.in_cue = True
                return

        # Blank lines and sequence numbers close the current cue
        if not line or line.isdigit():
            self._finalize()
            self.in_cue = False
            return

        if self.state is CueState.SEEKING_CUE:
            # Header, cue identifier or text of an already emitted cue
            return

        self.lines.append(line)
        self.state = CueState.READING_TEXT
        if not self.multiline:
            self._finalize()

    def _cue_start(self, line: str) -> Optional[str]:
        """Start time of a timing line, or None for spoken text containing the separator."""
        try:
            return normalize_timestamp(line.split(TIMESTAMP_SEPARATOR)[0])
        except ParseError:
            if self.in_cue:
                return None
            raise

    def finish(self) -> List[Segment]:
        self._finalize()
        return self.segments

    def _finalize(self) -> None:
        if self.timestamp and self.lines:
            speaker, text = split_speaker(" ".join(self.lines))
            if text:
                self.segments.append(Segment(speaker=speaker, timestamp=self.timestamp, text=text))

        self.state = CueState.SEEKING_CUE
        self.timestamp = None
        self.lines = []


def _parse(content: str, multiline: bool) -> NormalizedTranscript:
    if content.strip() and TIMESTAMP_SEPARATOR not in content:
        raise ParseError("Transcript contains no cues")

    parser = _CueParser(multiline=multiline)
    for line in content.splitlines():
        parser.feed(line)
    segments = parser.finish()

    return NormalizedTranscript(segments=segments, raw_text=" ".join(s.text for s in segments))


def parse_vtt(content: str) -> NormalizedTranscript:
    """Parse a WebVTT transcript."""
    transcript = _parse(content, multiline=False)
    logger.debug(f"Parsed VTT transcript: {len(transcript.segments)} segments")
    return transcript


def parse_srt(content: str) -> NormalizedTranscript:
    """Parse an SRT transcript."""
    transcript = _parse(content, multiline=True)
    logger.debug(f"Parsed SRT transcript: {len(transcript.segments)} segments")
    return transcript


def parse_transcript(content: str, file_extension: Optional[str] = None) -> NormalizedTranscript:
    """Parse a transcript, picking the format from the extension or the content.

    Args:
        content: Raw caption text.
        file_extension: Declared format ("vtt" or "srt"), if known.

    Returns:
        Normalized transcript.

    Raises:
        ParseError: If the content is not a caption file.
    """
    extension = (file_extension or "").lower().lstrip(".")

    if extension == "vtt":
        return parse_vtt(content)
    if extension == "srt":
        return parse_srt(content)

    if VTT_MARKER in content:
        logger.debug("Auto-detected VTT format")
        return parse_vtt(content)

    logger.debug("Defaulting to SRT format")
    return parse_srt(content)
