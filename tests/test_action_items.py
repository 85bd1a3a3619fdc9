import pytest

from zoom_archiver.models import NormalizedTranscript, Segment
from zoom_archiver.parsers.action_items import (
    calculate_confidence,
    count_pattern_matches,
    extract_action_items,
    extract_assignee,
    extract_due_date,
    extract_explicit_action_items,
)


def transcript(*segments):
    segs = [Segment(speaker, "00:00:00", text) for speaker, text in segments]
    return NormalizedTranscript(segments=segs, raw_text=" ".join(s.text for s in segs))


def test_single_pattern_is_not_an_action_item():
    assert count_pattern_matches("We will see how it goes") == 1
    assert extract_action_items(transcript(("Alice", "We will see how it goes"))) == []


def test_obligation_with_due_date_is_an_action_item():
    items = extract_action_items(transcript(("Alice", "I will send the report by Friday")))

    assert len(items) == 1
    item = items[0]
    assert item.text == "I will send the report by Friday"
    assert item.due_date == "Friday"
    assert item.assignee == "Alice"
    assert item.confidence >= 0.3
    assert item.confidence == pytest.approx(0.3 + 0.3 + 0.15 + 0.1)


def test_named_assignee_beats_speaker():
    items = extract_action_items(transcript(("Alice", "Bob will follow up with legal before Monday")))
    assert items[0].assignee == "Bob"
    assert items[0].due_date == "Monday"


def test_unknown_speaker_is_never_assignee():
    assert extract_assignee("I will handle the deploy", "Unknown") is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Carol Smith will prepare the slides", "Carol Smith"),
        ("The task is assigned to Dave", "Dave"),
        ("owner: Erin", "Erin"),
        ("We will circle back", None),
        ("They should know", None),
    ],
)
def test_extract_assignee(text, expected):
    assert extract_assignee(text) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("please finish by tomorrow", "tomorrow"),
        ("due 3/15 at the latest", "3/15"),
        ("before March 20 we need numbers", "March 20"),
        ("until next week", "next week"),
        ("Alice will send the deck by March 15th", "March 15"),
        ("we ship before Jan 3rd", "Jan 3"),
        ("due May 22nd or sooner", "May 22"),
        ("no deadline mentioned", None),
    ],
)
def test_extract_due_date(text, expected):
    assert extract_due_date(text) == expected


def test_confidence_is_capped():
    assert calculate_confidence(2, False, False) == pytest.approx(0.6)
    assert calculate_confidence(5, False, False) == pytest.approx(0.75)
    assert calculate_confidence(5, True, True) == pytest.approx(1.0)


def test_explicit_action_item_list():
    text = "Thanks all. Action items: update the roadmap document, send invoices to finance and schedule the retro"
    items = extract_explicit_action_items(text)

    assert [i.text for i in items] == [
        "update the roadmap document",
        "send invoices to finance",
        "schedule the retro",
    ]
    assert all(i.confidence == 0.8 and i.assignee is None for i in items)


def test_explicit_list_drops_short_fragments():
    items = extract_explicit_action_items("Action item: fix it, write the migration guide")
    assert [i.text for i in items] == ["write the migration guide"]


def test_both_sources_are_concatenated_without_dedup():
    segments = transcript(("Alice", "Action items: Bob will review the contract by Friday"))
    items = extract_action_items(segments)

    heuristic, explicit = items[0], items[1:]
    assert heuristic.text == "Action items: Bob will review the contract by Friday"
    assert [i.text for i in explicit] == ["Bob will review the contract by Friday"]
    assert explicit[0].confidence == 0.8
