#!/usr/bin/env python3
"""Zoom meeting archive sync using the Zoom REST API."""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from zoom_archiver.errors import AuthError, ParseError, PersistenceError, UpstreamError
from zoom_archiver.models import (
    DateWindow,
    MeetingRecord,
    MeetingRef,
    ProcessedEntry,
    RunResult,
    RunStatus,
)
from zoom_archiver.parsers.normalize import AiSummary, RawTranscript, normalize
from zoom_archiver.utils.config_loader import ConfigLoader
from zoom_archiver.utils.formatting import ObsidianFormatter
from zoom_archiver.utils.state_manager import StateManager
from zoom_archiver.zoom_api import ZoomApiClient
from zoom_archiver.zoom_auth import TokenManager

logger = logging.getLogger(__name__)

# Failures that only affect the meeting being processed
MEETING_ERRORS = (UpstreamError, ParseError, ValueError, KeyError, TypeError, OSError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_status(processed: int, errors: int) -> RunStatus:
    """Overall status of a run that was not aborted."""
    if errors == 0:
        return RunStatus.SUCCESS
    if processed >= errors:
        return RunStatus.PARTIAL
    return RunStatus.FAILURE


class ZoomSync:
    """Archives Zoom meeting summaries and transcripts to an Obsidian vault."""

    def __init__(
        self,
        config: ConfigLoader,
        dry_run: bool = False,
        api: Optional[ZoomApiClient] = None,
        state_manager: Optional[StateManager] = None,
        formatter: Optional[ObsidianFormatter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize Zoom sync.

        Args:
            config: Configuration loader.
            dry_run: If True, don't save files or update state.
            api: Zoom API client; built from the config when omitted.
            state_manager: State store; built from the config when omitted.
            formatter: Note writer; built from the config when omitted.
            clock: Returns the current UTC time.
        """
        self.config = config
        self.dry_run = dry_run
        self.zoom_config = config.get_zoom_config()
        self.clock = clock

        if api is None:
            session = requests.Session()
            token_manager = TokenManager(
                account_id=self.zoom_config["account_id"],
                client_id=self.zoom_config["client_id"],
                client_secret=self.zoom_config["client_secret"],
                session=session,
            )
            api = ZoomApiClient(token_manager, user_id=self.zoom_config.get("user_id", "me"), session=session)
        self.api = api

        self.state_manager = state_manager or StateManager(
            config.get_state_db_path(), platform="zoom", lookback_days=config.get_lookback_days()
        )
        self.formatter = formatter or ObsidianFormatter(config.get_output_path())

    def build_record(self, ref: MeetingRef, item: Dict[str, Any]) -> Optional[MeetingRecord]:
        """Fetch and normalize the content of one meeting.

        The AI Companion summary is preferred; the cloud recording transcript
        is the fallback.

        Args:
            ref: Meeting reference.
            item: Listing item, possibly carrying ``recording_files``.

        Returns:
            Meeting record, or None if the meeting has neither.
        """
        summary = self.api.get_meeting_summary(ref.uuid)

        if summary:
            logger.info("AI summary found, using Zoom AI Companion summary")
            source = AiSummary(summary)
            kind = "summary"
        else:
            transcript_file = ZoomApiClient.transcript_file(item)
            if transcript_file is None:
                logger.info("No AI summary or transcript available for this meeting, skipping")
                return None

            logger.info("No AI summary, downloading cloud recording transcript")
            content = self.api.download(transcript_file["download_url"])
            source = RawTranscript(content, transcript_file.get("file_extension"))
            kind = "transcript"

        normalized = normalize(source, self.config.action_items_enabled())

        return MeetingRecord(
            ref=ref,
            transcript=normalized.transcript,
            action_items=normalized.action_items,
            key_points=normalized.key_points,
            overview=normalized.overview,
            source=kind,
        )

    def process_meeting(self, item: Dict[str, Any]) -> Optional[ProcessedEntry]:
        """Process a single meeting.

        Args:
            item: Meeting listing item.

        Returns:
            The recorded entry, or None if the meeting was skipped.
        """
        ref = MeetingRef.from_api(item)
        record = self.build_record(ref, item)
        if record is None:
            return None

        if self.dry_run:
            start = ref.start_time.strftime("%Y-%m-%d %H:%M") if ref.start_time else "unknown date"
            logger.info(
                f"[DRY RUN] Would save meeting: {ref.topic} ({start}), "
                f"{len(record.transcript.segments)} segments, {len(record.action_items)} action items"
            )
            return None

        result = self.formatter.write_meeting(record)
        if result is None:
            return None

        entry = ProcessedEntry(
            uuid=ref.uuid,
            meeting_id=ref.meeting_id,
            processed_at=self.clock(),
            output_location=str(result.path),
            content_hash=result.content_hash,
        )
        self.state_manager.record_processed(entry)
        logger.info(f"Saved meeting: {ref.topic}")
        return entry

    def run_once(self, since: Optional[datetime] = None) -> RunResult:
        """Archive every new meeting since the last successful run.

        Args:
            since: Optional earlier start for the fetch window.

        Returns:
            Counts and overall status of the run.

        Raises:
            PersistenceError: If the updated state could not be saved.
        """
        logger.info("Starting Zoom sync")

        with self.state_manager as state_manager:
            state = state_manager.load()
            now = self.clock()

            fetch_since = state.last_fetch_timestamp
            if since is not None and since < fetch_since:
                fetch_since = since
                logger.info(f"Using explicit --since date: {since.date()}")
            else:
                logger.info(f"Using last fetch time: {fetch_since.isoformat()}")

            window = DateWindow(min(fetch_since, now), now)

            try:
                meetings = self.api.fetch_window(
                    window, include_recordings=self.zoom_config.get("include_cloud_recordings", True)
                )
            except (AuthError, UpstreamError) as e:
                logger.error(f"Failed to fetch meetings: {e}")
                return self._finish(RunResult(status=RunStatus.FAILURE, window=window, error=str(e)), advance=False)

            logger.info(f"Found {len(meetings)} meetings")

            try:
                processed, skipped, errors, truncated, fatal = self._process_meetings(meetings)
            except Exception as e:
                logger.error(f"Unexpected error, saving progress before aborting: {e}")
                self._save_after_crash()
                raise

            if fatal is not None:
                result = RunResult(
                    status=RunStatus.FAILURE,
                    processed=processed,
                    skipped=skipped,
                    errors=errors + 1,
                    window=window,
                    error=str(fatal),
                )
                return self._finish(result, advance=False)

            result = RunResult(
                status=run_status(processed, errors),
                processed=processed,
                skipped=skipped,
                errors=errors,
                window=window,
            )
            return self._finish(result, advance=not truncated)

    def _process_meetings(
        self, meetings: List[Dict[str, Any]]
    ) -> Tuple[int, int, int, bool, Optional[AuthError]]:
        """Process candidates in order until done, capped or stopped by an auth failure.

        Returns:
            (processed, skipped, errors, truncated, fatal auth error or None).
        """
        state_manager = self.state_manager
        max_meetings = self.config.get_max_meetings_per_run()
        processed = skipped = errors = attempted = 0
        truncated = False
        fatal: Optional[AuthError] = None

        for item in meetings:
            uuid = item.get("uuid")
            if not uuid:
                logger.warning("Meeting missing uuid, skipping")
                skipped += 1
                continue

            if state_manager.is_processed(uuid):
                logger.debug(f"Skipping already processed meeting: {uuid}")
                skipped += 1
                continue

            if attempted >= max_meetings:
                logger.info(f"Reached max_meetings_per_run ({max_meetings}), leaving the rest for the next run")
                truncated = True
                break

            attempted += 1
            topic = item.get("topic", uuid)
            logger.info(f"Processing: {topic}")

            try:
                entry = self.process_meeting(item)
            except AuthError as e:
                logger.error(f"Authentication failed, aborting run: {e}")
                fatal = e
                break
            except MEETING_ERRORS as e:
                errors += 1
                logger.error(f"Failed to process meeting {topic}: {e}")
                continue

            if entry is None:
                skipped += 1
            else:
                processed += 1

        return processed, skipped, errors, truncated, fatal

    def _save_after_crash(self) -> None:
        """Keep the meetings archived so far when the run dies on an unexpected error."""
        if self.dry_run:
            return

        self.state_manager.record_run_outcome(RunStatus.FAILURE)
        try:
            self.state_manager.save()
        except PersistenceError as e:
            # The original error is re-raised by the caller
            logger.error(f"Could not save state after unexpected error: {e}")

    def _finish(self, result: RunResult, advance: bool) -> RunResult:
        state_manager = self.state_manager

        if self.dry_run:
            logger.info("[DRY RUN] State not updated")
        else:
            boundary = result.window.end
            if advance and result.status is not RunStatus.FAILURE:
                if boundary >= state_manager.state.last_fetch_timestamp:
                    state_manager.advance_fetch_boundary(boundary)
                else:
                    logger.warning("Stored fetch boundary is in the future, leaving it unchanged")
            state_manager.record_run_outcome(result.status)
            state_manager.save()

        logger.info(
            f"Zoom sync complete: {result.processed} processed, {result.skipped} skipped, "
            f"{result.errors} errors, status {result.status.value}"
        )
        return result


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration.

    Args:
        verbose: If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )


def parse_since(value: str) -> datetime:
    since = datetime.fromisoformat(value)
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since


def main(argv=None):
    """Main entry point for Zoom sync."""
    parser = argparse.ArgumentParser(description="Archive Zoom meeting summaries and transcripts")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--since", help="Fetch meetings since date (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be archived without saving")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        # Load configuration
        config = ConfigLoader(args.config)

        # Parse since date if provided
        since = None
        if args.since:
            try:
                since = parse_since(args.since)
            except ValueError:
                logger.error(f"Invalid date format: {args.since}. Use ISO format (YYYY-MM-DD)")
                return 1

        # Run sync
        sync = ZoomSync(config, dry_run=args.dry_run)
        result = sync.run_once(since)

        if result.status is RunStatus.FAILURE:
            logger.error(f"Sync failed: {result.error or 'errors outnumbered successful meetings'}")
            return 1

        logger.info(f"Sync completed ({result.status.value}): {result.processed} meetings")
        return 0

    except Exception as e:
        logger.error(f"Sync failed: {e}")
        if args.verbose:
            logger.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
