"""Rendering and writing of meeting notes for Obsidian."""

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from zoom_archiver.models import ActionItem, MeetingRecord, MeetingRef

logger = logging.getLogger(__name__)

ACTION_ITEM_NOTE = "> Note: Action items are automatically extracted and may require verification."


@dataclass
class WriteResult:
    path: Path
    content_hash: str


class ObsidianFormatter:
    """Formats meeting records as Obsidian notes and writes them to the vault."""

    def __init__(self, output_path: Path, platform: str = "Zoom"):
        """Initialize the formatter.

        Args:
            output_path: Path to the output folder for markdown files.
            platform: Platform name used in filenames, tags and frontmatter.
        """
        self.output_path = Path(output_path)
        self.platform = platform

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        """Sanitize a string to be used as a filename.

        Args:
            filename: The string to sanitize.

        Returns:
            Sanitized filename.
        """
        # Replace invalid characters with underscores
        filename = re.sub(r'[<>:"/\\|?*]', "_", filename)
        filename = re.sub(r"\s+", " ", filename)
        # Remove leading/trailing spaces and dots
        filename = filename.strip(". ")
        # Limit length
        if len(filename) > 100:
            filename = filename[:100].rstrip(". ")
        return filename or "Untitled Meeting"

    @staticmethod
    def short_uuid(uuid: str) -> str:
        """First 12 alphanumeric characters of a Zoom UUID."""
        return re.sub(r"[^a-zA-Z0-9]", "", uuid)[:12]

    @staticmethod
    def meeting_date(ref: MeetingRef) -> datetime:
        return ref.start_time or datetime.now(timezone.utc)

    def generate_filename(self, ref: MeetingRef) -> str:
        """Generate a filename for a meeting note.

        The short uuid keeps recurring meetings with the same title and start
        minute apart.
        """
        date_str = self.meeting_date(ref).strftime("%Y-%m-%d_%H-%M")
        sanitized_title = self.sanitize_filename(ref.topic)
        return f"{date_str}_{self.platform}_{sanitized_title}_{self.short_uuid(ref.uuid)}.md"

    def note_path(self, ref: MeetingRef) -> Path:
        """Full path of a meeting's note: ``<output>/YYYY/MM/DD/<filename>``."""
        date = self.meeting_date(ref)
        return self.output_path / date.strftime("%Y") / date.strftime("%m") / date.strftime("%d") / self.generate_filename(ref)

    @staticmethod
    def create_frontmatter(metadata: Dict[str, Any]) -> str:
        """Create YAML frontmatter for the markdown file.

        Args:
            metadata: Dictionary containing metadata fields.

        Returns:
            YAML frontmatter as a string.
        """
        # Build frontmatter dict with only non-empty values
        frontmatter = {}

        for key, value in metadata.items():
            if value is None or value == [] or value == "":
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            frontmatter[key] = value

        tags = list(frontmatter.get("tags") or [])
        if "meeting" not in tags:
            tags.insert(0, "meeting")
        frontmatter["tags"] = tags

        yaml_str = yaml.dump(frontmatter, default_flow_style=False, sort_keys=False, allow_unicode=True)
        return f"---\n{yaml_str}---\n\n"

    @staticmethod
    def convert_urls_to_markdown(text: str) -> str:
        """Convert URLs in text to markdown format.

        Args:
            text: Text containing URLs.

        Returns:
            Text with URLs converted to markdown links.
        """
        # Pattern to match URLs that aren't already in markdown link format
        url_pattern = r'(?<!]\()https?://[^\s<>"\')]+(?![^\[]*\])'

        def replace_url(match):
            url = match.group(0)
            return f"[{url}]({url})"

        return re.sub(url_pattern, replace_url, text)

    @staticmethod
    def format_content(content: str) -> str:
        """Normalize line endings, links and blank lines of a note body."""
        # Convert URLs to markdown links
        formatted = ObsidianFormatter.convert_urls_to_markdown(content)

        # Ensure consistent line breaks
        formatted = formatted.replace("\r\n", "\n")

        # Remove excessive blank lines (more than 2)
        formatted = re.sub(r"\n{3,}", "\n\n", formatted)

        return formatted.strip() + "\n"

    @staticmethod
    def format_action_item(item: ActionItem) -> str:
        assignee = f" ({item.assignee})" if item.assignee else ""
        due_date = f" - Due: {item.due_date}" if item.due_date else ""
        return f"- [ ] {item.text}{assignee}{due_date}"

    def render_body(self, record: MeetingRecord) -> str:
        """Render the markdown body (everything below the frontmatter)."""
        ref = record.ref
        sections: List[str] = [f"# {ref.topic}", ""]

        if ref.start_time:
            start = ref.start_time.astimezone(timezone.utc)
            sections.append(f"**Date:** {start.strftime('%B %d, %Y')}")
            sections.append(f"**Time:** {start.strftime('%I:%M %p')} UTC")
        sections.append(f"**Duration:** {round(ref.duration_seconds / 60)} minutes")
        if ref.host:
            sections.append(f"**Host:** {ref.host}")
        sections.append("")

        if record.overview:
            sections.extend(["## Overview", "", record.overview.strip(), ""])

        if record.key_points:
            sections.append("## Key Points")
            sections.extend(f"- {point}" for point in record.key_points)
            sections.append("")

        if record.action_items:
            sections.extend(["## Action Items", ACTION_ITEM_NOTE, ""])
            # Highest confidence first
            for item in sorted(record.action_items, key=lambda i: i.confidence, reverse=True):
                sections.append(self.format_action_item(item))
            sections.append("")

        segments = record.transcript.segments
        if segments:
            sections.extend(["## Summary" if record.source == "summary" else "## Full Transcript", ""])
            last_speaker = None
            for segment in segments:
                # Group consecutive segments from the same speaker
                if segment.speaker != last_speaker:
                    if record.source == "summary":
                        sections.append(f"### {segment.speaker}")
                    else:
                        sections.append(f"**[{segment.timestamp}] {segment.speaker}:**")
                    last_speaker = segment.speaker
                sections.append(segment.text)
                sections.append("")

        sections.extend(["---", "", f"*Meeting UUID: {ref.uuid}*"])
        return self.format_content("\n".join(sections))

    def render_meeting(self, record: MeetingRecord) -> str:
        """Render a full note: frontmatter followed by the body."""
        ref = record.ref
        metadata = {
            "date": self.meeting_date(ref),
            "platform": self.platform,
            "title": ref.topic,
            "meeting_id": ref.meeting_id,
            "uuid": ref.uuid,
            "host": ref.host,
            "participants": [ref.host] if ref.host else None,
            "duration": f"{round(ref.duration_seconds / 60)}m" if ref.duration_seconds else None,
            "source": record.source,
            "tags": ["meeting", self.platform.lower()],
        }
        return self.create_frontmatter(metadata) + self.render_body(record)

    @staticmethod
    def content_hash(content: str) -> str:
        """Short SHA-256 digest used to audit what was written."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]

    def write_meeting(self, record: MeetingRecord) -> Optional[WriteResult]:
        """Render and save a meeting note.

        Existing notes are never overwritten.

        Args:
            record: Meeting to write.

        Returns:
            Location and content hash of the new note, or None if a note for
            this meeting already exists.

        Raises:
            IOError: If file cannot be written.
        """
        file_path = self.note_path(record.ref)
        if file_path.exists():
            logger.warning(f"File already exists, skipping: {file_path}")
            return None

        content = self.render_meeting(record)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            # "x" fails if another run created the note in the meantime
            with open(file_path, "x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError:
            logger.warning(f"File already exists, skipping: {file_path}")
            return None
        except IOError as e:
            logger.error(f"Failed to write file {file_path}: {e}")
            raise

        logger.info(f"Saved meeting to {file_path}")
        return WriteResult(path=file_path, content_hash=self.content_hash(content))
