from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from itertools import accumulate
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .errors import PlaybackError
from .merger import JoinedAsset
from .orchestrator import OrderedSegment

logger = logging.getLogger(__name__)

__all__ = [
    "PlaybackCursor",
    "PlaybackTimeline",
    "QueuePlayer",
    "NowPlayingInfo",
    "NowPlayingReporter",
    "LoggingNowPlayingReporter",
    "PlaybackController",
    "DEFAULT_SKIP_INTERVAL_MS",
]

DEFAULT_SKIP_INTERVAL_MS = 30_000


@dataclass(frozen=True)
class PlaybackCursor:
    elapsed_ms: int
    segment_index: int
    offset_ms: int


class PlaybackTimeline:
    """
    Maps a global elapsed time onto (segment, offset) pairs and back.

    Every method is a pure function of the duration table, so positions are always
    derived from the player's own clock and never drift.
    """

    def __init__(self, segment_durations_ms: Sequence[int]) -> None:
        durations = [int(duration) for duration in segment_durations_ms]
        if any(duration < 0 for duration in durations):
            raise PlaybackError(f"Segment durations must not be negative: {durations}")
        self.segment_durations_ms: List[int] = durations
        self._ends: List[int] = list(accumulate(durations))

    @property
    def total_ms(self) -> int:
        return self._ends[-1] if self._ends else 0

    def __len__(self) -> int:
        return len(self.segment_durations_ms)

    def start_of(self, segment_index: int) -> int:
        if segment_index <= 0 or not self._ends:
            return 0
        return self._ends[min(segment_index, len(self._ends)) - 1]

    def clamp(self, elapsed_ms: int) -> int:
        return max(0, min(int(elapsed_ms), self.total_ms))

    def global_time(self, segment_index: int, offset_ms: int) -> int:
        if not self._ends:
            return 0
        segment_index = max(0, min(segment_index, len(self._ends) - 1))
        return self.clamp(self.start_of(segment_index) + offset_ms)

    def seek(self, target_ms: int) -> PlaybackCursor:
        if not self._ends:
            return PlaybackCursor(elapsed_ms=0, segment_index=0, offset_ms=0)

        target = self.clamp(target_ms)
        # First segment whose running total exceeds the target.
        index = bisect.bisect_right(self._ends, target)
        if index >= len(self._ends):
            last = len(self._ends) - 1
            return PlaybackCursor(
                elapsed_ms=self.total_ms,
                segment_index=last,
                offset_ms=self.segment_durations_ms[last],
            )
        return PlaybackCursor(
            elapsed_ms=target,
            segment_index=index,
            offset_ms=target - self.start_of(index),
        )

    def skip(self, elapsed_ms: int, delta_ms: int) -> PlaybackCursor:
        return self.seek(elapsed_ms + delta_ms)

    def remaining_ms(self, elapsed_ms: int) -> int:
        return self.total_ms - self.clamp(elapsed_ms)


class QueuePlayer(Protocol):
    """
    Queue-based media player surface.

    ``current_item_index`` is relative to the last ``load`` call and is ``None`` once
    the queue has played out.
    """

    def load(self, locations: Sequence[Path]) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, offset_ms: int) -> None: ...

    @property
    def current_item_index(self) -> Optional[int]: ...

    def current_time_ms(self) -> int: ...


@dataclass(frozen=True)
class NowPlayingInfo:
    title: str
    elapsed_ms: int
    rate: float
    duration_ms: int


class NowPlayingReporter(Protocol):
    def publish(self, info: NowPlayingInfo) -> None: ...


class LoggingNowPlayingReporter:
    def publish(self, info: NowPlayingInfo) -> None:
        logger.info(
            "Now playing %s: %.1fs / %.1fs (rate %.1f)",
            info.title,
            info.elapsed_ms / 1000,
            info.duration_ms / 1000,
            info.rate,
        )


class PlaybackController:
    """
    Drives a queue player over an ordered list of audio items.

    The controller only remembers which item the current queue starts at; elapsed time
    is recomputed from the player on every query.
    """

    def __init__(
        self,
        locations: Sequence[Path],
        durations_ms: Sequence[int],
        *,
        title: str = "Reader",
        player: Optional[QueuePlayer] = None,
        reporter: Optional[NowPlayingReporter] = None,
        skip_interval_ms: int = DEFAULT_SKIP_INTERVAL_MS,
    ) -> None:
        if len(locations) != len(durations_ms):
            raise PlaybackError(
                f"Got {len(locations)} location(s) for {len(durations_ms)} duration(s)."
            )
        self.locations = [Path(location) for location in locations]
        self.timeline = PlaybackTimeline(durations_ms)
        self.title = title
        self.reporter = reporter
        self.skip_interval_ms = skip_interval_ms
        self.player: Optional[QueuePlayer] = None
        self.is_playing = False
        self._queue_start = 0
        if player is not None:
            self.attach(player)

    @classmethod
    def from_joined_asset(cls, asset: JoinedAsset, **kwargs) -> "PlaybackController":
        return cls([asset.location], [asset.total_duration_ms], **kwargs)

    @classmethod
    def from_segments(cls, segments: Sequence[OrderedSegment], **kwargs) -> "PlaybackController":
        ordered = sorted(segments, key=lambda segment: segment.index)
        return cls(
            [segment.location for segment in ordered],
            [segment.duration_ms for segment in ordered],
            **kwargs,
        )

    def attach(self, player: QueuePlayer) -> None:
        self.player = player
        self.is_playing = False
        self._load_from(0)

    def cursor(self) -> PlaybackCursor:
        if self.player is None:
            return self.timeline.seek(0)
        item = self.player.current_item_index
        if item is None:
            return self.timeline.seek(self.timeline.total_ms)
        index = self._queue_start + item
        offset = max(0, self.player.current_time_ms())
        return PlaybackCursor(
            elapsed_ms=self.timeline.global_time(index, offset),
            segment_index=index,
            offset_ms=offset,
        )

    @property
    def elapsed_ms(self) -> int:
        return self.cursor().elapsed_ms

    @property
    def remaining_ms(self) -> int:
        return self.timeline.remaining_ms(self.elapsed_ms)

    @property
    def total_ms(self) -> int:
        return self.timeline.total_ms

    @property
    def current_segment_index(self) -> int:
        return self.cursor().segment_index

    def play(self) -> None:
        if self.player is None:
            return
        self.player.play()
        self.is_playing = True
        self.report_now_playing()

    def pause(self) -> None:
        if self.player is None:
            return
        self.player.pause()
        self.is_playing = False
        self.report_now_playing()

    def toggle(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def seek(self, target_ms: int) -> PlaybackCursor:
        target = self.timeline.seek(target_ms)
        if self.player is None:
            return target

        item = self.player.current_item_index
        loaded = None if item is None else self._queue_start + item
        if target.segment_index != loaded:
            logger.debug(
                "Rebuilding queue from segment %d (was %s).", target.segment_index, loaded
            )
            self._load_from(target.segment_index)
        self.player.seek(target.offset_ms)
        if self.is_playing:
            self.player.play()
        self.report_now_playing()
        return target

    def skip_forward(self) -> PlaybackCursor:
        return self.seek(self.elapsed_ms + self.skip_interval_ms)

    def skip_backward(self) -> PlaybackCursor:
        return self.seek(self.elapsed_ms - self.skip_interval_ms)

    def handle_item_end(self) -> None:
        """
        Called from the player's end-of-item notification after it advanced its queue.
        """
        if self.player is not None and self.player.current_item_index is None:
            self.is_playing = False
        self.report_now_playing()

    def report_now_playing(self) -> None:
        if self.player is None or self.reporter is None:
            return
        info = NowPlayingInfo(
            title=self.title,
            elapsed_ms=self.elapsed_ms,
            rate=1.0 if self.is_playing else 0.0,
            duration_ms=self.total_ms,
        )
        try:
            self.reporter.publish(info)
        except Exception:
            logger.warning("Now playing update failed.", exc_info=True)

    def _load_from(self, segment_index: int) -> None:
        assert self.player is not None
        self.player.load(self.locations[segment_index:])
        self._queue_start = segment_index
