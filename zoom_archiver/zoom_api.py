"""Zoom REST API client: meeting reports, cloud recordings and AI summaries."""

import logging
import time
from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from zoom_archiver.errors import UpstreamError
from zoom_archiver.models import DateWindow
from zoom_archiver.utils.http import request_once
from zoom_archiver.utils.retry import DEFAULT_POLICY, RetryPolicy, with_retry
from zoom_archiver.zoom_auth import TokenManager

logger = logging.getLogger(__name__)

# Zoom error code for "no summary exists for this meeting"
NO_SUMMARY_CODE = 3001

CHUNK_STEP = timedelta(milliseconds=1)


def split_date_range(window: DateWindow, max_days: int = 30) -> List[DateWindow]:
    """Split a window into contiguous chunks of at most ``max_days``.

    Each chunk's end is inclusive; the next chunk starts one millisecond later.
    An empty window (start == end) yields no chunks.

    Args:
        window: Window to split.
        max_days: Maximum span of a single chunk.

    Returns:
        Chunks in chronological order.
    """
    max_span = timedelta(days=max_days)
    chunks = []
    current = window.start

    while current < window.end:
        chunk_end = min(current + max_span, window.end)
        chunks.append(DateWindow(current, chunk_end))
        current = chunk_end + CHUNK_STEP

    return chunks


def _format_date(value) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d")


class ZoomApiClient:
    """Client for the parts of the Zoom API the archiver reads from."""

    API_BASE_URL = "https://api.zoom.us/v2"
    PAGE_SIZE = 300
    MAX_CHUNK_DAYS = 30
    PAGE_DELAY = 0.1  # seconds between paginated requests

    def __init__(
        self,
        token_manager: TokenManager,
        user_id: str = "me",
        session: Optional[requests.Session] = None,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
    ):
        """Initialize the API client.

        Args:
            token_manager: Provides bearer tokens.
            user_id: Zoom user whose meetings are archived ("me" for the app owner).
            session: Optional HTTP session.
            retry_policy: Retry settings applied to every call.
        """
        self.token_manager = token_manager
        self.user_id = user_id or "me"
        self.session = session or requests.Session()

        retry = with_retry(retry_policy, on_unauthorized=token_manager.invalidate)
        self._get = retry(self._get_once)
        self._download = retry(self._download_once)

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token_manager.get_token().value}"}

    def _get_once(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.API_BASE_URL}/{endpoint.lstrip('/')}"
        logger.debug(f"API request: {endpoint} {params or {}}")
        response = request_once(self.session, "GET", url, headers=self._auth_headers(), params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {endpoint}", status=response.status_code) from e
        if not isinstance(data, dict):
            raise UpstreamError(
                f"Expected a JSON object from {endpoint}, got {type(data).__name__}", status=response.status_code
            )
        return data

    def _download_once(self, url: str) -> str:
        response = request_once(self.session, "GET", url, headers=self._auth_headers())
        return response.text

    def _paginate(self, endpoint: str, params: Dict[str, Any], items_key: str = "meetings") -> List[Dict[str, Any]]:
        """Follow ``next_page_token`` until the API stops returning one."""
        items: List[Dict[str, Any]] = []
        next_page_token = None

        while True:
            page_params = dict(params, page_size=self.PAGE_SIZE)
            if next_page_token:
                page_params["next_page_token"] = next_page_token

            data = self._get(endpoint, page_params)
            page_items = data.get(items_key) or []
            items.extend(page_items)

            total = data.get("total_records")
            logger.info(f"Fetched page with {len(page_items)} items (total: {len(items)}/{total or '?'})")

            next_page_token = data.get("next_page_token")
            if not page_items or not next_page_token:
                break

            time.sleep(self.PAGE_DELAY)

        return items

    def _list_chunked(
        self, endpoint: str, window: DateWindow, extra_params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        chunks = split_date_range(window, self.MAX_CHUNK_DAYS)
        logger.info(f"Split {window} into {len(chunks)} date chunks (max {self.MAX_CHUNK_DAYS} days each)")

        results: List[Dict[str, Any]] = []
        for index, chunk in enumerate(chunks):
            if chunk.is_empty:
                continue
            if index > 0:
                time.sleep(self.PAGE_DELAY)

            params = {"from": _format_date(chunk.start), "to": _format_date(chunk.end)}
            params.update(extra_params or {})
            logger.debug(f"Fetching chunk {params['from']} to {params['to']}")
            results.extend(self._paginate(endpoint, params))

        return results

    def list_recordings(self, window: DateWindow) -> List[Dict[str, Any]]:
        """List cloud recordings for the user within a window.

        Args:
            window: Date range to query.

        Returns:
            Recording items in the order the API returned them.
        """
        logger.info(f"Fetching cloud recordings from {window}")
        recordings = self._list_chunked(f"users/{self.user_id}/recordings", window)
        logger.info(f"Fetched {len(recordings)} recordings from Zoom")
        return recordings

    def list_meetings(self, window: DateWindow) -> List[Dict[str, Any]]:
        """List all past meetings for the user via the Reports API.

        The Reports API limits each query to 30 days, so the window is chunked
        and each chunk paginated on its own.

        Args:
            window: Date range to query.

        Returns:
            Meeting items in discovery order.
        """
        logger.info(f"Fetching meetings from {window}")
        meetings = self._list_chunked(f"report/users/{self.user_id}/meetings", window, {"type": "past"})
        logger.info(f"Fetched {len(meetings)} meetings from Zoom")
        return meetings

    def fetch_window(self, window: DateWindow, include_recordings: bool = True) -> List[Dict[str, Any]]:
        """Collect the candidate meetings for a window.

        Report meetings come first. Cloud recordings with a completed transcript
        are merged in: their ``recording_files`` are attached to the matching
        report meeting, and recordings missing from the report are appended.
        Items are unique by uuid.

        Args:
            window: Date range to query.
            include_recordings: Whether to query cloud recordings as well.

        Returns:
            Meeting items in discovery order.
        """
        candidates: List[Dict[str, Any]] = []
        by_uuid: Dict[str, Dict[str, Any]] = {}

        for meeting in self.list_meetings(window):
            uuid = meeting.get("uuid")
            if not uuid or uuid in by_uuid:
                continue
            by_uuid[uuid] = meeting
            candidates.append(meeting)

        if include_recordings:
            recordings = self.filter_recordings_with_transcripts(self.list_recordings(window))
            for recording in recordings:
                uuid = recording.get("uuid")
                if not uuid:
                    continue
                if uuid in by_uuid:
                    by_uuid[uuid].setdefault("recording_files", recording.get("recording_files", []))
                else:
                    by_uuid[uuid] = recording
                    candidates.append(recording)

        return candidates

    def get_meeting_summary(self, meeting_uuid: str) -> Optional[Dict[str, Any]]:
        """Get the AI Companion summary of a meeting.

        Args:
            meeting_uuid: Meeting UUID.

        Returns:
            Summary payload, or None if the meeting has no summary.
        """
        # Zoom requires UUIDs to be double encoded in paths
        encoded_uuid = quote(quote(meeting_uuid, safe=""), safe="")

        try:
            summary = self._get(f"meetings/{encoded_uuid}/meeting_summary")
        except UpstreamError as e:
            if e.status == 404 or e.code == NO_SUMMARY_CODE:
                logger.debug(f"No meeting summary available for {meeting_uuid}")
                return None
            raise

        logger.info(f"Fetched meeting summary for {meeting_uuid}")
        return summary

    def download(self, url: str) -> str:
        """Download a recording file (e.g. a transcript) as text.

        Args:
            url: The file's ``download_url``.

        Returns:
            File content.
        """
        return self._download(url)

    @staticmethod
    def filter_recordings_with_transcripts(recordings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Keep only recordings with a completed transcript file."""
        return [r for r in recordings if ZoomApiClient.transcript_file(r) is not None]

    @staticmethod
    def transcript_file(recording: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the completed TRANSCRIPT file of a recording, if any."""
        for recording_file in recording.get("recording_files") or []:
            if recording_file.get("file_type") == "TRANSCRIPT" and recording_file.get("status") == "completed":
                return recording_file
        return None
