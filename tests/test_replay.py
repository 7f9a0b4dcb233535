import asyncio
import math

import pytest

from callreplay.replay.audio import AudioResolver
from callreplay.replay.clock import PlaybackClock
from callreplay.replay.models import NO_SEGMENT, AudioHandle, PlaybackState, Segment, timeline_duration
from callreplay.replay.player import ReplayPlayer
from callreplay.replay.scheduler import SegmentScheduler, find_active_segment

from conftest import FakeTTSEngine, InMemoryReplayStore, make_segments


class TestSegment:
    def test_half_open_interval(self):
        seg = Segment("user", "hi", start_offset=1.0, duration=2.0)
        assert seg.contains(1.0)
        assert seg.contains(2.99)
        assert not seg.contains(3.0)
        assert seg.end_offset == 3.0

    def test_rejects_negative_start_and_zero_duration(self):
        with pytest.raises(ValueError):
            Segment("user", "hi", start_offset=-1.0, duration=1.0)
        with pytest.raises(ValueError):
            Segment("user", "hi", start_offset=0.0, duration=0.0)

    def test_from_dict_accepts_timestamp_and_audio_url(self):
        seg = Segment.from_dict(
            {"speaker": "assistant", "text": "Hello", "timestamp": 2.5, "duration": 2, "audioUrl": "https://x/a.mp3"}
        )
        assert seg.speaker == "prospect"
        assert seg.start_offset == 2.5
        assert seg.audio_handle is not None
        assert seg.audio_handle.url == "https://x/a.mp3"

    def test_timeline_duration(self):
        assert timeline_duration([]) == 0.0
        assert timeline_duration(make_segments((0, 3), (1, 1), (4, 2))) == 6.0


class TestAudioHandle:
    def test_data_uri_and_release(self):
        handle = AudioHandle(data=b"abc", mime_type="audio/mpeg")
        assert handle.url == "data:audio/mpeg;base64,YWJj"
        assert handle.size == 3
        handle.release()
        handle.release()
        assert handle.is_released
        assert handle.data is None
        assert handle.url is None


class TestFindActiveSegment:
    def test_gap_is_no_segment(self):
        segments = make_segments((0, 1), (2, 1))
        assert find_active_segment(segments, 1.5) == NO_SEGMENT
        assert find_active_segment(segments, 3.0) == NO_SEGMENT

    def test_overlap_earliest_start_wins(self):
        segments = make_segments((2, 3), (0, 4))
        assert find_active_segment(segments, 2.5) == 1

    def test_equal_starts_resolve_by_list_order(self):
        segments = make_segments((1, 3), (1, 1))
        assert find_active_segment(segments, 1.5) == 0


class TestPlaybackClock:
    @pytest.fixture
    def clock(self):
        state = PlaybackState(duration=10.0)
        return PlaybackClock(state, tick_interval=1.0, rate_scales_clock=True, min_rate=0.5, max_rate=2.0, drive_timer=False)

    def test_seek_clamps(self, clock):
        clock.seek(-5)
        assert clock.state.current_time == 0.0
        clock.seek(100)
        assert clock.state.current_time == 10.0

    def test_seek_ignores_non_finite(self, clock):
        clock.seek(4.0)
        clock.seek(math.nan)
        clock.seek(math.inf)
        assert clock.state.current_time == 4.0

    def test_volume_and_rate_clamp(self, clock):
        clock.set_volume(1.5)
        assert clock.state.volume == 1.0
        clock.set_volume(-1)
        assert clock.state.volume == 0.0
        clock.set_rate(10)
        assert clock.state.rate == 2.0
        clock.set_rate(0.1)
        assert clock.state.rate == 0.5

    def test_tick_scales_with_rate(self, clock):
        clock.set_rate(2.0)
        clock.play()
        clock.tick()
        assert clock.state.current_time == 2.0

    def test_rate_not_scaling_clock(self):
        state = PlaybackState(duration=10.0)
        clock = PlaybackClock(state, tick_interval=1.0, rate_scales_clock=False, drive_timer=False)
        clock.set_rate(2.0)
        clock.play()
        clock.tick()
        assert state.current_time == 1.0

    def test_end_of_timeline_pauses_at_duration(self, clock):
        halted = []
        clock._on_halt = lambda: halted.append(True)
        clock.seek(9.5)
        clock.play()
        clock.tick()
        assert clock.state.current_time == 10.0
        assert not clock.state.is_playing
        assert halted == [True]

    def test_end_of_timeline_from_exact_duration(self, clock):
        halted = []
        clock._on_halt = lambda: halted.append(True)
        clock.seek(10)
        clock.play()
        assert clock.state.is_playing
        clock.tick()
        assert clock.state.current_time == 10.0
        assert not clock.state.is_playing
        assert halted == [True]

    def test_tick_when_paused_does_nothing(self, clock):
        clock.tick()
        assert clock.state.current_time == 0.0

    def test_play_without_duration_is_noop(self):
        clock = PlaybackClock(PlaybackState(duration=0.0), tick_interval=1.0, drive_timer=False)
        clock.play()
        assert not clock.state.is_playing

    @pytest.mark.asyncio
    async def test_timer_drives_ticks(self):
        state = PlaybackState(duration=10.0)
        clock = PlaybackClock(state, tick_interval=0.01, rate_scales_clock=True)
        clock.play()
        assert clock.timer_running
        await asyncio.sleep(0.1)
        clock.pause()
        assert not clock.timer_running
        assert state.current_time > 0.0


class TestAudioResolver:
    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_synthesis(self, engine):
        engine.gate = asyncio.Event()
        resolver = AudioResolver(engine, {"user": "v-user", "prospect": "v-prospect"})
        seg = make_segments((0, 2))[0]
        first = asyncio.create_task(resolver.resolve(seg))
        second = asyncio.create_task(resolver.resolve(seg))
        await asyncio.sleep(0)
        engine.gate.set()
        a, b = await asyncio.gather(first, second)
        assert a is b
        assert len(engine.calls) == 1
        assert engine.calls[0] == ("line 0", "v-user")
        assert seg.audio_handle is a
        # cached afterwards
        assert await resolver.resolve(seg) is a
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_yields_no_audio(self):
        resolver = AudioResolver(FakeTTSEngine(fail=True))
        seg = make_segments((0, 2))[0]
        assert await resolver.resolve(seg) is None
        assert seg.audio_handle is None

    @pytest.mark.asyncio
    async def test_empty_audio_yields_no_audio(self):
        resolver = AudioResolver(FakeTTSEngine(empty=True))
        seg = make_segments((0, 2))[0]
        assert await resolver.resolve(seg) is None

    @pytest.mark.asyncio
    async def test_no_engine(self):
        resolver = AudioResolver(None)
        assert await resolver.resolve(make_segments((0, 2))[0]) is None

    @pytest.mark.asyncio
    async def test_existing_handle_is_used(self, engine):
        resolver = AudioResolver(engine)
        seg = make_segments((0, 2))[0]
        seg.audio_handle = AudioHandle(url="https://x/a.mp3")
        assert (await resolver.resolve(seg)).url == "https://x/a.mp3"
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_close_releases_handles(self, engine):
        resolver = AudioResolver(engine)
        seg = make_segments((0, 2))[0]
        handle = await resolver.resolve(seg)
        await resolver.close()
        await resolver.close()
        assert handle.is_released
        assert seg.audio_handle is None
        assert await resolver.resolve(seg) is None


class TestSegmentScheduler:
    def _build(self, engine, output, *spans, tick=1.0):
        state = PlaybackState()
        segments = make_segments(*spans)
        state.duration = timeline_duration(segments)
        scheduler = SegmentScheduler(segments, AudioResolver(engine), output, state)
        clock = PlaybackClock(state, tick_interval=tick, rate_scales_clock=True, on_tick=scheduler.on_tick, drive_timer=False)
        return state, segments, scheduler, clock

    @pytest.mark.asyncio
    async def test_one_resolve_per_activation(self, engine, output):
        state, _, scheduler, clock = self._build(engine, output, (0, 3), (3, 2))
        clock.play()
        for _ in range(4):
            clock.tick()
            await scheduler.wait_idle()
        assert state.active_segment_index == 1
        assert len(engine.calls) == 2
        assert output.played == [0, 1]

    @pytest.mark.asyncio
    async def test_gap_keeps_audio_until_next_segment(self, engine, output):
        state, _, scheduler, clock = self._build(engine, output, (0, 1), (1.5, 1), tick=0.5)
        clock.play()
        clock.tick()  # t=0.5: segment 0
        await scheduler.wait_idle()
        assert output.stops == 1
        clock.tick()  # t=1.0: in the gap
        await scheduler.wait_idle()
        assert state.active_segment_index == NO_SEGMENT
        assert scheduler.current_index == 0
        assert output.stops == 1
        clock.tick()  # t=1.5: segment 1
        await scheduler.wait_idle()
        assert output.stops == 2
        assert output.played == [0, 1]

    @pytest.mark.asyncio
    async def test_superseded_resolution_never_plays(self, engine, output):
        engine.gate = asyncio.Event()
        state, segments, scheduler, clock = self._build(engine, output, (0, 1), (1, 1), tick=0.5)
        clock.play()
        clock.tick()  # t=0.5 -> segment 0
        await asyncio.sleep(0)
        clock.tick()  # t=1.0 -> segment 1
        await asyncio.sleep(0)
        engine.gate.set()
        await scheduler.wait_idle()
        await asyncio.sleep(0)
        assert output.played == [1]
        # the superseded synthesis still cached its audio
        assert segments[0].audio_handle is not None

    @pytest.mark.asyncio
    async def test_paused_before_resolution_does_not_play(self, engine, output):
        engine.gate = asyncio.Event()
        state, _, scheduler, clock = self._build(engine, output, (0, 5))
        clock.play()
        clock.tick()
        state.is_playing = False
        engine.gate.set()
        await scheduler.wait_idle()
        assert output.played == []

    @pytest.mark.asyncio
    async def test_invalidate_replays_segment(self, engine, output):
        state, _, scheduler, clock = self._build(engine, output, (0, 5))
        clock.play()
        clock.tick()
        await scheduler.wait_idle()
        scheduler.invalidate()
        clock.tick()
        await scheduler.wait_idle()
        assert output.played == [0, 0]
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_finished_tasks_are_released(self, engine, output):
        engine.gate = asyncio.Event()
        _, _, scheduler, clock = self._build(engine, output, (0, 1), (1, 1), tick=0.5)
        clock.play()
        clock.tick()
        clock.tick()
        assert len(scheduler._tasks) == 2
        engine.gate.set()
        await asyncio.gather(*list(scheduler._tasks))
        await asyncio.sleep(0)
        assert scheduler._tasks == set()

    @pytest.mark.asyncio
    async def test_close_cancels_every_pending_task(self, engine, output):
        engine.gate = asyncio.Event()
        _, _, scheduler, clock = self._build(engine, output, (0, 1), (1, 1), tick=0.5)
        clock.play()
        clock.tick()
        clock.tick()
        tasks = list(scheduler._tasks)
        await scheduler.close()
        assert all(t.done() for t in tasks)
        assert scheduler._tasks == set()
        engine.gate.set()
        await asyncio.sleep(0.01)
        assert output.played == []


class TestReplayPlayer:
    ROWS = [
        {"index": 0, "speaker": "user", "text": "Hi there", "timestamp": 0.0, "duration": 2.0},
        {"index": 1, "speaker": "prospect", "text": "Who is this?", "timestamp": 2.5, "duration": 2.0},
        {"index": 2, "speaker": "user", "text": "bad", "timestamp": -1, "duration": 2.0},
    ]

    def _player(self, engine, output, store=None):
        store = store or InMemoryReplayStore({"c1": self.ROWS})
        return ReplayPlayer(
            "c1", store, AudioResolver(engine), output, tick_interval=1.0, skip_seconds=1.5, drive_timer=False
        )

    @pytest.mark.asyncio
    async def test_initialize_loads_valid_segments(self, engine, output):
        player = self._player(engine, output)
        assert await player.initialize()
        assert player.is_ready
        assert len(player.segments) == 2
        assert player.state.duration == 4.5
        assert player.state.error is None

    @pytest.mark.asyncio
    async def test_load_failure_is_terminal(self, engine, output):
        player = self._player(engine, output, InMemoryReplayStore(fail=True))
        assert not await player.initialize()
        assert player.state.error == "Failed to load replay data"
        assert not player.state.is_loading
        player.play()
        assert not player.state.is_playing

    @pytest.mark.asyncio
    async def test_unknown_call_fails_creation(self, engine, output):
        player = self._player(engine, output, InMemoryReplayStore())
        assert not await player.initialize()
        assert player.state.error == "Failed to create replay"

    @pytest.mark.asyncio
    async def test_playback_and_seek(self, engine, output):
        player = self._player(engine, output)
        await player.initialize()
        states = []
        player.add_listener(lambda s: states.append(s.current_time))
        player.play()
        player.clock.tick()
        await player.scheduler.wait_idle()
        assert output.played == [0]
        player.seek(3.0)
        assert player.state.active_segment_index == 1
        assert player.current_segment().text == "Who is this?"
        player.clock.tick()
        await player.scheduler.wait_idle()
        assert output.played == [0, 1]
        assert states

    @pytest.mark.asyncio
    async def test_skip_clamps_to_timeline(self, engine, output):
        player = self._player(engine, output)
        await player.initialize()
        player.skip_back()
        assert player.state.current_time == 0.0
        player.skip_forward()
        assert player.state.current_time == 1.5
        player.jump_to_time(99)
        assert player.state.current_time == 4.5

    @pytest.mark.asyncio
    async def test_pause_stops_audio(self, engine, output):
        player = self._player(engine, output)
        await player.initialize()
        player.play()
        player.clock.tick()
        await player.scheduler.wait_idle()
        stops = output.stops
        player.pause()
        assert not player.state.is_playing
        assert output.stops > stops
        assert player.scheduler.current_index == NO_SEGMENT

    @pytest.mark.asyncio
    async def test_volume_and_rate_reach_output(self, engine, output):
        player = self._player(engine, output)
        await player.initialize()
        player.set_volume(0.3)
        player.set_playback_rate(1.5)
        assert output.volume == 0.3
        assert output.rate == 1.5

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_releases_audio(self, engine, output):
        player = self._player(engine, output)
        await player.initialize()
        player.play()
        player.clock.tick()
        await player.scheduler.wait_idle()
        await player.close()
        await player.close()
        assert output.closed
        assert player.segments[0].audio_handle is None
        player.play()
        assert not player.state.is_playing

    @pytest.mark.asyncio
    async def test_close_before_initialize(self, engine, output):
        player = self._player(engine, output)
        await player.close()
        assert not await player.initialize()

    @pytest.mark.asyncio
    async def test_seek_into_each_segment_resolves_once(self, engine, output):
        rows = [
            {"index": 0, "speaker": "user", "text": "Hi", "timestamp": 0, "duration": 2},
            {"index": 1, "speaker": "prospect", "text": "Hello", "timestamp": 3, "duration": 2},
        ]
        player = ReplayPlayer(
            "c2", InMemoryReplayStore({"c2": rows}), AudioResolver(engine), output, tick_interval=0.1, drive_timer=False
        )
        assert await player.initialize()
        player.play()
        player.seek(1)
        assert player.state.active_segment_index == 0
        player.clock.tick()
        await player.scheduler.wait_idle()
        player.seek(4)
        assert player.state.active_segment_index == 1
        player.clock.tick()
        await player.scheduler.wait_idle()
        assert [text for text, _ in engine.calls] == ["Hi", "Hello"]
        assert output.played == [0, 1]
        await player.close()
