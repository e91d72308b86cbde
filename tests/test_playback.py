from pathlib import Path

import pytest

from reader_pipeline.errors import PlaybackError
from reader_pipeline.merger import JoinedAsset
from reader_pipeline.orchestrator import OrderedSegment
from reader_pipeline.playback import PlaybackController, PlaybackCursor, PlaybackTimeline


class FakePlayer:
    def __init__(self):
        self.loads = []
        self.item = 0
        self.time = 0
        self.playing = False

    def load(self, locations):
        self.loads.append(list(locations))
        self.item = 0
        self.time = 0

    def play(self):
        self.playing = True

    def pause(self):
        self.playing = False

    def seek(self, offset_ms):
        self.time = offset_ms

    @property
    def current_item_index(self):
        return self.item

    def current_time_ms(self):
        return self.time


class RecordingReporter:
    def __init__(self):
        self.published = []

    def publish(self, info):
        self.published.append(info)


DURATIONS = [10_000, 15_000, 20_000]
LOCATIONS = [Path("a.aac"), Path("b.aac"), Path("c.aac")]


def test_timeline_seek_maps_to_segment_and_offset():
    timeline = PlaybackTimeline(DURATIONS)

    assert timeline.total_ms == 45_000
    assert timeline.seek(0) == PlaybackCursor(0, 0, 0)
    assert timeline.seek(9_999) == PlaybackCursor(9_999, 0, 9_999)
    assert timeline.seek(10_000) == PlaybackCursor(10_000, 1, 0)
    assert timeline.seek(24_999) == PlaybackCursor(24_999, 1, 14_999)
    assert timeline.seek(30_000) == PlaybackCursor(30_000, 2, 5_000)


def test_timeline_seek_clamps_out_of_range_targets():
    timeline = PlaybackTimeline(DURATIONS)

    assert timeline.seek(-5_000) == PlaybackCursor(0, 0, 0)
    assert timeline.seek(45_000) == PlaybackCursor(45_000, 2, 20_000)
    assert timeline.seek(99_000) == PlaybackCursor(45_000, 2, 20_000)


def test_timeline_global_time_inverts_seek():
    timeline = PlaybackTimeline(DURATIONS)

    for target in (0, 1, 9_999, 10_000, 17_500, 44_999):
        cursor = timeline.seek(target)
        assert timeline.global_time(cursor.segment_index, cursor.offset_ms) == target


def test_timeline_skip_composes():
    timeline = PlaybackTimeline(DURATIONS)

    forward = timeline.skip(timeline.skip(5_000, 30_000).elapsed_ms, -30_000)
    assert forward.elapsed_ms == 5_000
    assert timeline.skip(40_000, 30_000).elapsed_ms == 45_000
    assert timeline.skip(10_000, -30_000).elapsed_ms == 0
    assert timeline.remaining_ms(40_000) == 5_000


def test_timeline_edge_cases():
    empty = PlaybackTimeline([])
    assert empty.total_ms == 0
    assert empty.seek(1_000) == PlaybackCursor(0, 0, 0)

    with pytest.raises(PlaybackError):
        PlaybackTimeline([1_000, -1])


def test_controller_seek_rebuilds_queue_only_across_segments():
    player = FakePlayer()
    controller = PlaybackController(LOCATIONS, DURATIONS, player=player)
    assert player.loads == [LOCATIONS]

    cursor = controller.seek(12_000)
    assert cursor == PlaybackCursor(12_000, 1, 2_000)
    assert player.loads[-1] == LOCATIONS[1:]
    assert controller.elapsed_ms == 12_000

    controller.seek(20_000)
    assert len(player.loads) == 2
    assert player.time == 10_000
    assert controller.elapsed_ms == 20_000


def test_controller_skips_from_player_clock():
    player = FakePlayer()
    controller = PlaybackController(LOCATIONS, DURATIONS, player=player)
    controller.play()

    player.time = 4_000
    cursor = controller.skip_forward()
    assert cursor == PlaybackCursor(34_000, 2, 9_000)
    assert player.loads[-1] == LOCATIONS[2:]
    assert player.playing

    cursor = controller.skip_backward()
    assert cursor.elapsed_ms == 4_000
    assert controller.current_segment_index == 0
    assert controller.remaining_ms == 41_000


def test_controller_reports_end_of_queue():
    player = FakePlayer()
    reporter = RecordingReporter()
    controller = PlaybackController(LOCATIONS, DURATIONS, player=player, reporter=reporter)
    controller.play()

    player.item = None
    controller.handle_item_end()

    assert controller.is_playing is False
    assert controller.elapsed_ms == 45_000
    info = reporter.published[-1]
    assert info.elapsed_ms == 45_000
    assert info.duration_ms == 45_000
    assert info.rate == 0.0


def test_controller_without_player_is_a_no_op():
    reporter = RecordingReporter()
    controller = PlaybackController(LOCATIONS, DURATIONS, reporter=reporter)

    controller.play()
    controller.toggle()
    assert controller.seek(12_000) == PlaybackCursor(12_000, 1, 2_000)
    assert controller.is_playing is False
    assert reporter.published == []


def test_reporter_failure_does_not_stop_playback():
    class BrokenReporter:
        def publish(self, info):
            raise RuntimeError("remote control unavailable")

    player = FakePlayer()
    controller = PlaybackController(LOCATIONS, DURATIONS, player=player, reporter=BrokenReporter())

    controller.play()

    assert player.playing
    assert controller.is_playing


def test_controller_from_joined_asset_and_segments():
    asset = JoinedAsset(location=Path("joined.m4a"), segment_durations_ms=DURATIONS)
    joined = PlaybackController.from_joined_asset(asset, title="Book")
    assert joined.locations == [Path("joined.m4a")]
    assert joined.total_ms == 45_000

    segments = [
        OrderedSegment(index=2, location=Path("c.aac"), duration_ms=20_000),
        OrderedSegment(index=0, location=Path("a.aac"), duration_ms=10_000),
        OrderedSegment(index=1, location=Path("b.aac"), duration_ms=15_000),
    ]
    queued = PlaybackController.from_segments(segments)
    assert queued.locations == LOCATIONS
    assert queued.timeline.seek(30_000).segment_index == 2


def test_controller_rejects_mismatched_inputs():
    with pytest.raises(PlaybackError):
        PlaybackController(LOCATIONS, DURATIONS[:2])
