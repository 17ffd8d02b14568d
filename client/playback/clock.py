"""
Pure playback reducer.

(state, command) -> (new_state, effects)

Rules:
- Pure: no side effects, no IO, no clocks (time arrives in Tick).
- Deterministic: output depends only on inputs.
- Total: every (mode, command) pair is handled or explicitly ignored (logged).

State machine:
    STOPPED   --Play/TogglePlay-->            PLAYING
    PLAYING   --Pause/TogglePlay-->           STOPPED
    PLAYING   --Tick reaching loop end-->     PLAYING (cursor = loop start)
    PLAYING   --Tick reaching last frame-->   STOPPED
    any       --ScrubStart/ScrubMove-->       SCRUBBING (playback suspended)
    SCRUBBING --ScrubEnd-->                   PLAYING or STOPPED (pre-drag state)
"""

from __future__ import annotations

import math
from dataclasses import replace

from constants import PLAYBACK_SPEED_MAX, PLAYBACK_SPEED_MIN
from playback.commands import (
    ClearLoop,
    Command,
    Pause,
    Play,
    ScrubEnd,
    ScrubMove,
    ScrubStart,
    Seek,
    SetLoop,
    SetSpeed,
    Tick,
    TogglePlay,
)
from playback.effects import Effect, LoadTrigger, LogEvent, RequestLoad, SendControl
from playback.enums.mode import PlaybackMode
from playback.state import LoopRegion, PlaybackState
from transport.backend import ControlAction


Result = tuple[PlaybackState, list[Effect]]


# =============================================================================
# Small helpers
# =============================================================================

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp_frame(state: PlaybackState, frame: int) -> int:
    return min(max(int(frame), 0), state.last_frame)


def _clamp_speed(speed: float) -> float:
    return min(max(float(speed), PLAYBACK_SPEED_MIN), PLAYBACK_SPEED_MAX)


def _log(command: Command, decision: str, state: PlaybackState, **extra: object) -> LogEvent:
    return LogEvent({
        "event_type": "PLAYBACK_" + command.command_type.value,
        "decision": decision,
        "mode": state.mode.value,
        "cursor": state.cursor,
        **extra,
    })


def _ignore(state: PlaybackState, command: Command, reason: str) -> Result:
    return state, [_log(command, "ignore", state, reason=reason, level="DEBUG")]


# =============================================================================
# Clock advance
# =============================================================================

def advance_playback(state: PlaybackState, now_ms: float) -> Result:
    """
    Advance the cursor by wall-clock time elapsed since the last tick.

    - Not playing: forget the last tick, no-op.
    - First tick after (re)start: record now_ms only, no jump.
    - Otherwise move round(elapsed_s * tick_rate * speed) frames, clamped.
    - Loop enabled and loop.end reached: land exactly on loop.start and
      re-arm the clock (no catch-up burst), notify the server.
    - Last frame reached: stop.
    """
    if not state.playing:
        if state.last_tick_ms is None:
            return state, []
        return replace(state, last_tick_ms=None), []

    loop = state.loop if state.loop is not None and state.loop.enabled else None

    if state.last_tick_ms is None:
        if loop is None and state.cursor >= state.last_frame:
            return replace(state, mode=PlaybackMode.STOPPED), [
                LogEvent({
                    "event_type": "PLAYBACK_END_REACHED",
                    "cursor": state.cursor,
                }),
            ]
        return replace(state, last_tick_ms=now_ms), []

    elapsed_s = (now_ms - state.last_tick_ms) / 1000.0
    step = _round_half_up(elapsed_s * state.tick_rate * state.speed)
    cursor = _clamp_frame(state, state.cursor + step)

    if loop is not None and cursor >= loop.end:
        wrapped = replace(state, cursor=loop.start, last_tick_ms=None)
        return wrapped, [
            SendControl(ControlAction.SEEK, float(loop.start)),
            LogEvent({
                "event_type": "PLAYBACK_LOOP_WRAP",
                "from_cursor": cursor,
                "loop_start": loop.start,
                "loop_end": loop.end,
            }),
        ]

    if cursor >= state.last_frame:
        stopped = replace(
            state, cursor=state.last_frame, mode=PlaybackMode.STOPPED, last_tick_ms=None
        )
        return stopped, [
            LogEvent({
                "event_type": "PLAYBACK_END_REACHED",
                "cursor": stopped.cursor,
            }),
        ]

    return replace(state, cursor=cursor, last_tick_ms=now_ms), []


# =============================================================================
# Transport controls
# =============================================================================

def _handle_play(state: PlaybackState, command: Command) -> Result:
    if state.scrubbing:
        # Applies once the drag ends
        new_state = replace(state, resume_after_scrub=True)
        return new_state, [_log(command, "resume_after_scrub", new_state)]
    if state.playing:
        return _ignore(state, command, "already_playing")

    new_state = replace(state, mode=PlaybackMode.PLAYING, last_tick_ms=None)
    return new_state, [
        SendControl(ControlAction.PLAY),
        RequestLoad(LoadTrigger.IMMEDIATE),
        _log(command, "stopped_to_playing", new_state),
    ]


def _handle_pause(state: PlaybackState, command: Command) -> Result:
    if state.scrubbing:
        new_state = replace(state, resume_after_scrub=False)
        return new_state, [_log(command, "stay_paused_after_scrub", new_state)]
    if not state.playing:
        return _ignore(state, command, "already_stopped")

    new_state = replace(state, mode=PlaybackMode.STOPPED, last_tick_ms=None)
    return new_state, [
        SendControl(ControlAction.PAUSE),
        _log(command, "playing_to_stopped", new_state),
    ]


def _handle_toggle(state: PlaybackState, command: TogglePlay) -> Result:
    if state.scrubbing:
        if state.resume_after_scrub:
            return _handle_pause(state, command)
        return _handle_play(state, command)
    if state.playing:
        return _handle_pause(state, command)
    return _handle_play(state, command)


def _handle_seek(state: PlaybackState, command: Seek) -> Result:
    if state.scrubbing:
        return _ignore(state, command, "scrub_in_progress")
    cursor = _clamp_frame(state, command.frame)
    new_state = replace(state, cursor=cursor)
    return new_state, [
        SendControl(ControlAction.SEEK, float(cursor)),
        RequestLoad(LoadTrigger.COMMIT),
        _log(command, "seek", new_state),
    ]


def _handle_speed(state: PlaybackState, command: SetSpeed) -> Result:
    if math.isnan(command.speed):
        return _ignore(state, command, "invalid_speed")
    speed = _clamp_speed(command.speed)
    new_state = replace(state, speed=speed)
    return new_state, [
        SendControl(ControlAction.SPEED, speed),
        _log(command, "speed_set", new_state, speed=speed),
    ]


# =============================================================================
# Scrubbing
# =============================================================================

def _begin_scrub(state: PlaybackState) -> PlaybackState:
    return replace(
        state,
        mode=PlaybackMode.SCRUBBING,
        resume_after_scrub=state.playing,
        last_tick_ms=None,
    )


def _handle_scrub_start(state: PlaybackState, command: ScrubStart) -> Result:
    if state.scrubbing:
        return _ignore(state, command, "already_scrubbing")
    new_state = _begin_scrub(state)
    return new_state, [
        SendControl(ControlAction.PAUSE),
        _log(command, "scrub_started", new_state, resume=new_state.resume_after_scrub),
    ]


def _handle_scrub_move(state: PlaybackState, command: ScrubMove) -> Result:
    effects: list[Effect] = []
    if not state.scrubbing:
        # Drag began without an explicit start
        state = _begin_scrub(state)
        effects.append(SendControl(ControlAction.PAUSE))

    new_state = replace(state, cursor=_clamp_frame(state, command.frame))
    effects.append(RequestLoad(LoadTrigger.SCRUB))
    return new_state, effects


def _handle_scrub_end(state: PlaybackState, command: ScrubEnd) -> Result:
    if not state.scrubbing:
        return _handle_seek(state, Seek(frame=command.frame))

    resume = state.resume_after_scrub
    new_state = replace(
        state,
        cursor=_clamp_frame(state, command.frame),
        mode=PlaybackMode.PLAYING if resume else PlaybackMode.STOPPED,
        resume_after_scrub=False,
        last_tick_ms=None,
    )
    effects: list[Effect] = [SendControl(ControlAction.SEEK, float(new_state.cursor))]
    if resume:
        effects.append(SendControl(ControlAction.PLAY))
    effects.append(RequestLoad(LoadTrigger.COMMIT))
    effects.append(_log(command, "scrub_ended", new_state, resumed=resume))
    return new_state, effects


# =============================================================================
# Loop region
# =============================================================================

def _handle_set_loop(state: PlaybackState, command: SetLoop) -> Result:
    start = _clamp_frame(state, command.start)
    end = _clamp_frame(state, command.end)
    try:
        loop = LoopRegion(start=start, end=end, enabled=command.enabled)
    except ValueError:
        return _ignore(state, command, "empty_loop_region")

    new_state = replace(state, loop=loop)
    return new_state, [
        _log(command, "loop_set", new_state,
             loop_start=loop.start, loop_end=loop.end, enabled=loop.enabled),
    ]


def _handle_clear_loop(state: PlaybackState, command: ClearLoop) -> Result:
    if state.loop is None:
        return _ignore(state, command, "no_loop")
    new_state = replace(state, loop=None)
    return new_state, [_log(command, "loop_cleared", new_state)]


# =============================================================================
# Entry point
# =============================================================================

def reduce(state: PlaybackState, command: Command) -> Result:
    """
    Single update entry point for playback state.

    Returns the new state and the effects to execute, in order.
    """
    if isinstance(command, Tick):
        return advance_playback(state, command.now_ms)
    if isinstance(command, Play):
        return _handle_play(state, command)
    if isinstance(command, Pause):
        return _handle_pause(state, command)
    if isinstance(command, TogglePlay):
        return _handle_toggle(state, command)
    if isinstance(command, Seek):
        return _handle_seek(state, command)
    if isinstance(command, SetSpeed):
        return _handle_speed(state, command)
    if isinstance(command, ScrubStart):
        return _handle_scrub_start(state, command)
    if isinstance(command, ScrubMove):
        return _handle_scrub_move(state, command)
    if isinstance(command, ScrubEnd):
        return _handle_scrub_end(state, command)
    if isinstance(command, SetLoop):
        return _handle_set_loop(state, command)
    if isinstance(command, ClearLoop):
        return _handle_clear_loop(state, command)

    return _ignore(state, command, "unknown_command")
