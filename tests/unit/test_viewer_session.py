# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio

from buffers.window import ViewMode
from conftest import FakeBackend, make_record
from config import AppConfig
from playback.enums.mode import PlaybackMode
from session.throughput import ThroughputMeter
from session.viewer_session import ViewerSession
from transport.backend import ReplayInfo
from transport.errors import FrameFetchError


def info(**kwargs) -> ReplayInfo:
    base = {"total_frames": 10_000, "tick_rate": 60}
    base.update(kwargs)
    return ReplayInfo(**base)


# ---------------------------------------------------------------------
# Live ingest
# ---------------------------------------------------------------------

def test_live_records_become_samples_with_metrics():
    session = ViewerSession(FakeBackend(), live_capacity=10)

    sample = session.on_live_record(make_record(20), now_ms=1000.0)

    assert sample is not None
    assert sample.timestamp_ms == 1000
    assert sample.metric("speed") == 20 * 3.6
    assert len(session.live) == 1
    assert session.latest_record["vehicle"]["rpm"] == 1020.0


def test_paused_live_stream_counts_arrivals_but_does_not_buffer():
    session = ViewerSession(FakeBackend(), live_capacity=10)
    session.live_paused = True

    assert session.on_live_record(make_record(1), now_ms=0.0) is None
    session.on_live_record(make_record(2), now_ms=100.0)

    assert len(session.live) == 0
    assert session.throughput.fps(100.0) == 10.0


def test_session_throughput_and_disconnect(events):
    session = ViewerSession(FakeBackend(), live_capacity=100)
    for i in range(61):
        session.on_live_record(make_record(i), now_ms=i * 1000.0 / 60)

    assert session.throughput_percent(now_ms=1000.0) == 100

    session.on_live_disconnect()

    assert session.throughput_percent(now_ms=1000.0) is None
    assert events[-1]["event_type"] == "LIVE_STREAM_DISCONNECTED"
    assert events[-1]["buffered"] == 61


def test_live_window_through_session():
    session = ViewerSession(FakeBackend(), live_capacity=100)
    for i in range(20):
        session.on_live_record(make_record(i), now_ms=i * 100.0)

    view = session.window(session.context(now_ms=1900.0, window_ms=500))

    assert view.mode is ViewMode.LIVE
    assert len(view) == 6  # 1400 .. 1900


# ---------------------------------------------------------------------
# Replay lifecycle
# ---------------------------------------------------------------------

def test_enter_replay_restores_server_position_and_loads():
    async def scenario() -> ViewerSession:
        session = ViewerSession(FakeBackend(10_000))
        await session.enter_replay(info(current_frame=2500, playing=False, playback_speed=2.0))
        return session

    session = asyncio.run(scenario())

    state = session.runtime.state
    assert session.mode is ViewMode.REPLAY
    assert state.cursor == 2500
    assert state.mode is PlaybackMode.STOPPED
    assert state.speed == 2.0
    assert session.cache.has(2500)
    assert session.cache.current_sample().timestamp_ms == int(2500 / 60 * 1000)

    view = session.window(session.context(window_ms=1000))
    assert view.mode is ViewMode.REPLAY
    assert view.at(len(view) // 2) is not None


def test_enter_replay_twice_drops_previous_recording():
    async def scenario() -> ViewerSession:
        session = ViewerSession(FakeBackend(10_000))
        await session.enter_replay(info(current_frame=9000))
        await session.runtime.wait_idle()
        await session.enter_replay(info(total_frames=2000, current_frame=0))
        return session

    session = asyncio.run(scenario())

    assert session.cache.total_frames == 2000
    assert not session.cache.has(9000)
    assert session.cache.has(0)


def test_exit_replay_returns_to_live_and_clears_cache():
    async def scenario() -> ViewerSession:
        session = ViewerSession(FakeBackend(10_000))
        await session.enter_replay(info())
        await session.exit_replay()
        return session

    session = asyncio.run(scenario())

    assert session.mode is ViewMode.LIVE
    assert session.cache.count == 0
    assert session.runtime.state.total_frames == 0
    assert session.replay_info is None


def test_exit_replay_closes_server_side_replay():
    async def scenario() -> FakeBackend:
        backend = FakeBackend(10_000)
        session = ViewerSession(backend)
        await session.enter_replay(info())
        await session.exit_replay()
        await session.wait_idle()
        await session.exit_replay()  # already live, no second close
        await session.wait_idle()
        return backend

    backend = asyncio.run(scenario())
    assert backend.closed == 1


def test_failed_close_is_logged_and_session_goes_live(events):
    async def scenario() -> ViewerSession:
        backend = FakeBackend(10_000)
        backend.close_error = FrameFetchError("DELETE replay -> 500")
        session = ViewerSession(backend, replay_id="r9")
        await session.enter_replay(info())
        await session.exit_replay()
        await session.wait_idle()
        return session

    session = asyncio.run(scenario())

    assert session.mode is ViewMode.LIVE
    failed = [e for e in events if e["event_type"] == "REPLAY_CLOSE_FAILED"]
    assert len(failed) == 1
    assert failed[0]["level"] == "WARNING"
    assert failed[0]["replay_id"] == "r9"


def test_expected_rate_follows_replay_speed():
    async def scenario() -> ViewerSession:
        session = ViewerSession(FakeBackend(10_000))
        await session.enter_replay(info(playback_speed=4.0))
        return session

    session = asyncio.run(scenario())
    assert session.expected_rate() == 240.0


def test_from_config_uses_configured_sizes():
    config = AppConfig(
        env="test",
        log_level="INFO",
        enable_json_logs=True,
        backend_base_url="http://replay.test/api/replay",
        replay_id="abc",
        request_timeout_s=None,
        live_buffer_capacity=42,
        scrub_debounce_ms=200,
        seek_debounce_ms=50,
    )

    session = ViewerSession.from_config(config, FakeBackend())

    assert session.live.capacity == 42


# ---------------------------------------------------------------------
# Throughput
# ---------------------------------------------------------------------

def test_throughput_percent_against_expected_rate():
    meter = ThroughputMeter(window_ms=2000)
    for i in range(31):
        meter.record(i * 50.0)  # 20 fps

    assert meter.percent(1500.0, expected_rate=20.0) == 100
    assert meter.percent(1500.0, expected_rate=40.0) == 50


def test_throughput_unknown_with_fewer_than_two_arrivals():
    meter = ThroughputMeter()
    assert meter.percent(0.0, expected_rate=60.0) is None
    meter.record(0.0)
    assert meter.percent(0.0, expected_rate=60.0) is None


def test_throughput_forgets_old_arrivals():
    meter = ThroughputMeter(window_ms=2000)
    meter.record(0.0)
    meter.record(100.0)

    assert meter.fps(5000.0) is None
