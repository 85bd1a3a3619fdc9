from datetime import datetime, timedelta, timezone

import pytest
import yaml

from zoom_archiver.errors import AuthError, DuplicateKeyError, PersistenceError, UpstreamError
from zoom_archiver.models import MeetingRef, RunStatus
from zoom_archiver.utils.config_loader import ConfigLoader
from zoom_archiver.utils.state_manager import StateManager
from zoom_archiver.zoom_sync import ZoomSync, main, run_status

# the first-run lookback is measured from the wall clock
NOW = datetime.now(timezone.utc).replace(microsecond=0)

TRANSCRIPT = """WEBVTT

1
00:00:01.000 --> 00:00:03.000
Alice: Hello team

2
00:00:04.000 --> 00:00:08.000
Bob: I will send the report by Friday
"""


class FakeApi:
    def __init__(self, meetings, summaries=None, downloads=None):
        self.meetings = meetings
        self.summaries = summaries or {}
        self.downloads = downloads or {}
        self.windows = []

    def fetch_window(self, window, include_recordings=True):
        self.windows.append(window)
        if isinstance(self.meetings, Exception):
            raise self.meetings
        return [dict(m) for m in self.meetings]

    def get_meeting_summary(self, uuid):
        value = self.summaries.get(uuid)
        if isinstance(value, Exception):
            raise value
        return value

    def download(self, url):
        value = self.downloads[url]
        if isinstance(value, Exception):
            raise value
        return value


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def meeting(uuid, day=1, **extra):
    return {
        "uuid": uuid,
        "id": 100 + day,
        "topic": f"Meeting {uuid}",
        "start_time": f"2024-03-{day:02d}T09:00:00Z",
        "duration": 30,
        "user_email": "host@example.com",
        **extra,
    }


def summary(uuid):
    return {
        "meeting_uuid": uuid,
        "summary_overview": "Overview",
        "summary_details": [{"label": "Topic", "summary": "Discussed things."}],
        "next_steps": ["Ship it"],
    }


def transcript_files(url="https://zoom.us/rec/download/t1"):
    return [{"file_type": "TRANSCRIPT", "status": "completed", "download_url": url, "file_extension": "VTT"}]


@pytest.fixture
def config(tmp_path, monkeypatch):
    for name in ("ZOOM_ACCOUNT_ID", "ZOOM_CLIENT_ID", "ZOOM_CLIENT_SECRET", "ENABLE_ACTION_ITEMS", "MAX_MEETINGS_PER_RUN"):
        monkeypatch.delenv(name, raising=False)
    vault = tmp_path / "vault"
    vault.mkdir()
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "obsidian_vault_path": str(vault),
                "output_folder": "Meetings",
                "state_db": str(tmp_path / "state.db"),
                "zoom": {"account_id": "acct", "client_id": "cid", "client_secret": "secret"},
            }
        )
    )
    return ConfigLoader(str(path))


def notes(config):
    return sorted(config.get_output_path().rglob("*.md"))


def load_state(config):
    with StateManager(config.get_state_db_path()) as manager:
        return manager.load()


def make_sync(config, api, clock=None, **kwargs):
    return ZoomSync(config, api=api, clock=clock or Clock(), **kwargs)


@pytest.mark.parametrize(
    "processed, errors, expected",
    [
        (3, 0, RunStatus.SUCCESS),
        (0, 0, RunStatus.SUCCESS),
        (2, 1, RunStatus.PARTIAL),
        (1, 1, RunStatus.PARTIAL),
        (1, 2, RunStatus.FAILURE),
        (0, 1, RunStatus.FAILURE),
    ],
)
def test_run_status(processed, errors, expected):
    assert run_status(processed, errors) is expected


def test_second_run_is_idempotent(config):
    api = FakeApi([meeting("m1"), meeting("m2", day=2)], summaries={"m1": summary("m1"), "m2": summary("m2")})

    first = make_sync(config, api).run_once()
    assert (first.status, first.processed, first.skipped, first.errors) == (RunStatus.SUCCESS, 2, 0, 0)
    assert len(notes(config)) == 2
    entries = load_state(config).processed_entries

    second = make_sync(config, api).run_once()
    assert (second.processed, second.skipped) == (0, 2)
    assert len(notes(config)) == 2
    assert load_state(config).processed_entries == entries


def test_boundary_advances_monotonically(config):
    clock = Clock()
    api = FakeApi([])

    make_sync(config, api, clock).run_once()
    first = load_state(config).last_fetch_timestamp
    assert first == NOW

    clock.now = NOW + timedelta(hours=1)
    make_sync(config, api, clock).run_once()
    second = load_state(config).last_fetch_timestamp

    assert second >= first
    assert api.windows[1].start == first
    assert api.windows[1].end == second


def test_first_run_window_uses_lookback(config):
    api = FakeApi([])
    make_sync(config, api).run_once()

    window = api.windows[0]
    assert window.end == NOW
    assert timedelta(days=149) < window.span() < timedelta(days=151)


def test_since_only_widens_window(config):
    api = FakeApi([])
    make_sync(config, api).run_once()

    make_sync(config, api).run_once(since=NOW - timedelta(days=3))
    assert api.windows[1].start == NOW - timedelta(days=3)

    make_sync(config, api).run_once(since=NOW + timedelta(days=3))
    assert api.windows[2].start == NOW


def test_existing_note_is_skipped_not_recorded(config):
    api = FakeApi([meeting("m1")], summaries={"m1": summary("m1")})
    sync = make_sync(config, api)

    existing = sync.formatter.note_path(MeetingRef.from_api(meeting("m1")))
    existing.parent.mkdir(parents=True)
    existing.write_text("already here", encoding="utf-8")

    result = sync.run_once()

    assert (result.status, result.processed, result.skipped, result.errors) == (RunStatus.SUCCESS, 0, 1, 0)
    assert load_state(config).processed_entries == {}
    assert existing.read_text(encoding="utf-8") == "already here"


def test_transcript_fallback_extracts_action_items(config):
    url = "https://zoom.us/rec/download/t1"
    api = FakeApi([meeting("m1", recording_files=transcript_files(url))], downloads={url: TRANSCRIPT})

    result = make_sync(config, api).run_once()

    assert result.processed == 1
    [note] = notes(config)
    content = note.read_text(encoding="utf-8")
    assert "## Full Transcript" in content
    assert "- [ ] I will send the report by Friday (Bob) - Due: Friday" in content
    entry = load_state(config).processed_entries["m1"]
    assert entry.output_location == str(note)
    assert entry.meeting_id == "101"


def test_action_items_can_be_disabled(config):
    config.config["enable_action_items"] = False
    url = "https://zoom.us/rec/download/t1"
    api = FakeApi([meeting("m1", recording_files=transcript_files(url))], downloads={url: TRANSCRIPT})

    make_sync(config, api).run_once()

    [note] = notes(config)
    assert "## Action Items" not in note.read_text(encoding="utf-8")


def test_meeting_without_content_is_skipped(config):
    result = make_sync(config, FakeApi([meeting("m1")])).run_once()
    assert (result.status, result.processed, result.skipped) == (RunStatus.SUCCESS, 0, 1)
    assert not load_state(config).processed_entries


def test_per_meeting_errors_do_not_stop_the_run(config):
    url = "https://zoom.us/rec/download/bad"
    api = FakeApi(
        [meeting("m1"), meeting("m2", day=2), meeting("m3", day=3, recording_files=transcript_files(url))],
        summaries={"m1": summary("m1"), "m2": UpstreamError("forbidden", status=403)},
        downloads={url: "not a caption file"},
    )
    result = make_sync(config, api).run_once()

    # one success against two errors
    assert (result.processed, result.errors) == (1, 2)
    assert result.status is RunStatus.FAILURE
    state = load_state(config)
    assert set(state.processed_entries) == {"m1"}
    assert state.statistics.consecutive_failures == 1
    # boundary stays put so failed meetings are retried
    assert state.last_fetch_timestamp < NOW


def test_partial_run_still_advances_boundary(config):
    api = FakeApi(
        [meeting("m1"), meeting("m2", day=2)],
        summaries={"m1": summary("m1"), "m2": UpstreamError("server error", status=500, retryable=True)},
    )
    result = make_sync(config, api).run_once()

    assert result.status is RunStatus.PARTIAL
    state = load_state(config)
    assert state.last_fetch_timestamp == NOW
    assert state.statistics.last_run_status is RunStatus.PARTIAL


def test_auth_failure_while_listing_is_fatal(config):
    result = make_sync(config, FakeApi(AuthError("bad credentials"))).run_once()

    assert result.status is RunStatus.FAILURE
    assert "bad credentials" in result.error
    state = load_state(config)
    assert state.statistics.last_run_status is RunStatus.FAILURE
    assert state.statistics.consecutive_failures == 1


def test_auth_failure_mid_run_keeps_finished_meetings(config):
    api = FakeApi(
        [meeting("m1"), meeting("m2", day=2), meeting("m3", day=3)],
        summaries={"m1": summary("m1"), "m2": AuthError("token rejected"), "m3": summary("m3")},
    )
    result = make_sync(config, api).run_once()

    assert result.status is RunStatus.FAILURE
    assert result.processed == 1
    state = load_state(config)
    assert set(state.processed_entries) == {"m1"}
    assert state.last_fetch_timestamp < NOW


def test_unexpected_error_saves_finished_meetings_before_raising(config):
    api = FakeApi(
        [meeting("m1"), meeting("m2", day=2)],
        summaries={"m1": summary("m1"), "m2": [{"label": "not a summary object"}]},
    )
    with pytest.raises(AttributeError):
        make_sync(config, api).run_once()

    assert len(notes(config)) == 1
    state = load_state(config)
    assert set(state.processed_entries) == {"m1"}
    assert state.statistics.last_run_status is RunStatus.FAILURE
    assert state.last_fetch_timestamp < NOW

    # the next run does not lose m1 to the "note already exists" path
    api.summaries["m2"] = summary("m2")
    result = make_sync(config, api).run_once()
    assert (result.processed, result.skipped) == (1, 1)
    assert set(load_state(config).processed_entries) == {"m1", "m2"}


def test_duplicate_record_aborts_but_keeps_progress(config, monkeypatch):
    api = FakeApi([meeting("m1"), meeting("m2", day=2)], summaries={"m1": summary("m1"), "m2": summary("m2")})
    sync = make_sync(config, api)
    original = sync.state_manager.record_processed

    def record_twice(entry):
        original(entry)
        if entry.uuid == "m2":
            original(entry)

    monkeypatch.setattr(sync.state_manager, "record_processed", record_twice)
    with pytest.raises(DuplicateKeyError):
        sync.run_once()

    assert set(load_state(config).processed_entries) == {"m1", "m2"}


def test_cap_leaves_remaining_meetings_for_next_run(config):
    config.config["max_meetings_per_run"] = 1
    api = FakeApi([meeting("m1"), meeting("m2", day=2)], summaries={"m1": summary("m1"), "m2": summary("m2")})

    first = make_sync(config, api).run_once()
    assert first.processed == 1
    assert load_state(config).last_fetch_timestamp < NOW

    second = make_sync(config, api).run_once()
    assert (second.processed, second.skipped) == (1, 1)
    assert load_state(config).last_fetch_timestamp == NOW


def test_dry_run_writes_nothing(config):
    api = FakeApi([meeting("m1")], summaries={"m1": summary("m1")})
    result = make_sync(config, api, dry_run=True).run_once()

    assert result.processed == 0
    assert notes(config) == []
    assert load_state(config).processed_entries == {}


def test_save_failure_propagates(config, monkeypatch):
    sync = make_sync(config, FakeApi([]))

    def fail():
        raise PersistenceError("disk full")

    monkeypatch.setattr(sync.state_manager, "save", fail)
    with pytest.raises(PersistenceError):
        sync.run_once()


def test_main_fails_without_config(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_main_rejects_bad_since(config):
    assert main(["--config", str(config.config_path), "--since", "last tuesday"]) == 1
