import pytest

from echoscript.server.models import Emotion, TranscriptionSegment
from echoscript.server.timestamps import correct_segments, correct_timestamp, format_clock, parse_clock


@pytest.mark.parametrize(
    "timestamp, offset, expected",
    [
        ("00:05 - 00:10", 600, "10:05 - 10:10"),
        ("00:00 - 00:30", 0, "00:00 - 00:30"),
        ("05:00 - 05:30", 3600, "65:00 - 65:30"),
        ("1:5-2:7", 0, "01:05 - 02:07"),
        ("01:30", 60, "02:30 - 02:30"),
        ("00:10 – 00:20", 600, "10:10 - 10:20"),
        ("01:02:03 - 01:02:05", 0, "62:03 - 62:05"),
        ("ab:cd - 00:xx", 60, "01:00 - 01:00"),
        ("", 1200, "20:00 - 20:00"),
    ],
)
def test_correct_timestamp(timestamp, offset, expected):
    assert correct_timestamp(timestamp, offset) == expected


def test_correction_with_zero_offset_is_stable():
    once = correct_timestamp("3:7 -  12:45", 0)

    assert once == "03:07 - 12:45"
    assert correct_timestamp(once, 0) == once


def test_parse_clock_uses_leading_digits():
    assert parse_clock("12abc:07") == 12 * 60 + 7
    assert parse_clock("x:y") == 0
    assert parse_clock("42") == 42 * 60


def test_format_clock_does_not_wrap_hours():
    assert format_clock(0) == "00:00"
    assert format_clock(125) == "02:05"
    assert format_clock(6000) == "100:00"


def test_correct_segments_keeps_order_and_fields():
    segments = [
        TranscriptionSegment("Speaker 1", "00:01 - 00:04", "uh hello", "Hello.", Emotion.HAPPY),
        TranscriptionSegment("Speaker 2", "00:05 - 00:09", "hi", "Hi.", None, language="en"),
    ]

    corrected = correct_segments(segments, 600)

    assert [s.timestamp for s in corrected] == ["10:01 - 10:04", "10:05 - 10:09"]
    assert [s.speaker for s in corrected] == ["Speaker 1", "Speaker 2"]
    assert corrected[0].emotion is Emotion.HAPPY
    assert corrected[1].language == "en"
    # Inputs are left untouched
    assert segments[0].timestamp == "00:01 - 00:04"
