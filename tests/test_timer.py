import pytest

from conftest import T0, ManualScheduler
from tomatine.core.models import TimerMode
from tomatine.core.scheduler import SchedulingStrategy
from tomatine.core.timer import TimerEngine
from tomatine.core.visibility import VisibilitySource


class Recorder:
    def __init__(self) -> None:
        self.ticks: list[int] = []
        self.completions = 0
        self.drifts: list[int] = []

    def on_tick(self, remaining: int) -> None:
        self.ticks.append(remaining)

    def on_complete(self) -> None:
        self.completions += 1

    def on_drift_detected(self, drift: int) -> None:
        self.drifts.append(drift)


def make_engine(clock, interval, recorder=None, **kwargs) -> TimerEngine:
    recorder = recorder or Recorder()
    return TimerEngine(
        recorder.on_tick,
        recorder.on_complete,
        recorder.on_drift_detected,
        clock=clock,
        interval_scheduler=interval,
        **kwargs,
    )


def test_remaining_right_after_start(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.start(60_000, TimerMode.FOCUS)

    assert engine.get_remaining() == 60_000
    assert engine.is_running
    assert engine.strategy == SchedulingStrategy.INTERVAL
    state = engine.get_state()
    assert state.started_at == T0
    assert state.target_at == T0 + 60_000

    clock.advance(400)
    assert engine.get_remaining() == 59_600


@pytest.mark.parametrize("duration", [0, -1])
def test_start_rejects_non_positive_duration(clock, interval, duration) -> None:
    engine = make_engine(clock, interval)
    with pytest.raises(ValueError):
        engine.start(duration)


def test_pause_resume_compensates_for_paused_time(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.start(60_000)
    clock.advance(10_000)

    engine.pause()
    assert engine.get_remaining() == 0
    assert not interval.is_armed

    clock.advance(3_600_000)
    engine.resume()

    assert engine.get_remaining() == 50_000
    assert engine.get_state().target_at == T0 + 60_000 + 3_600_000
    assert interval.is_armed


def test_pause_resume_stop_are_idempotent(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.start(60_000)
    clock.advance(1_000)

    engine.pause()
    paused = engine.get_state()
    clock.advance(5_000)
    engine.pause()
    assert engine.get_state() == paused

    engine.resume()
    resumed = engine.get_state()
    clock.advance(1_000)
    engine.resume()
    assert engine.get_state().target_at == resumed.target_at

    engine.stop()
    engine.stop()
    assert engine.mode == TimerMode.IDLE
    assert engine.get_state().target_at is None
    assert not interval.is_armed


def test_resume_without_pause_is_noop(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.resume()
    assert not engine.is_running

    engine.start(10_000)
    engine.resume()
    assert engine.get_state().target_at == T0 + 10_000


def test_completion_fires_exactly_once(clock, interval) -> None:
    recorder = Recorder()
    engine = make_engine(clock, interval, recorder, update_interval_ms=10)
    engine.start(50, TimerMode.FOCUS)

    clock.advance(10)
    interval.fire()
    assert recorder.completions == 0

    clock.advance(50)
    interval.fire()
    interval.fire()
    engine.check_and_correct_drift()
    clock.advance(10_000)
    interval.fire()

    assert recorder.completions == 1
    assert recorder.ticks[-1] == 0
    assert not engine.is_running
    assert not interval.is_armed


def test_drift_is_reported_without_moving_target(clock, interval) -> None:
    recorder = Recorder()
    engine = make_engine(clock, interval, recorder)
    engine.start(600_000)

    clock.advance(1_000)
    interval.fire()
    assert recorder.drifts == []

    # Simulate a sleep: the next tick arrives a minute late.
    clock.advance(61_000)
    interval.fire()

    assert recorder.drifts == [60_000]
    assert engine.get_state().target_at == T0 + 600_000
    assert engine.get_remaining() == 600_000 - 62_000
    assert recorder.ticks[-1] == 600_000 - 62_000
    assert engine.get_state().last_update == clock.now


def test_small_delay_is_not_drift(clock, interval) -> None:
    recorder = Recorder()
    engine = make_engine(clock, interval, recorder)
    engine.start(600_000)

    clock.advance(5_900)
    assert engine.check_and_correct_drift() is False
    assert recorder.drifts == []


def test_drift_check_ignored_when_not_running(clock, interval) -> None:
    recorder = Recorder()
    engine = make_engine(clock, interval, recorder)
    clock.advance(60_000)
    assert engine.check_and_correct_drift() is False

    engine.start(600_000)
    engine.pause()
    clock.advance(60_000)
    assert engine.check_and_correct_drift() is False
    assert recorder.drifts == []


def test_start_while_running_replaces_countdown(clock, interval) -> None:
    recorder = Recorder()
    engine = make_engine(clock, interval, recorder)
    engine.start(10_000, TimerMode.WARMUP)
    clock.advance(2_000)
    engine.start(30_000, TimerMode.BREAK)

    assert engine.mode == TimerMode.BREAK
    assert engine.get_remaining() == 30_000
    assert interval.is_armed


def test_tick_callback_error_does_not_stop_loop(clock, interval) -> None:
    def broken_tick(remaining: int) -> None:
        raise RuntimeError("render failed")

    recorder = Recorder()
    engine = TimerEngine(on_tick=broken_tick, clock=clock, interval_scheduler=interval)
    engine.subscribe(on_tick=recorder.on_tick)
    engine.start(10_000)

    clock.advance(1_000)
    interval.fire()

    assert engine.is_running
    assert interval.is_armed
    assert recorder.ticks == [9_000]


def test_complete_callback_error_leaves_engine_stopped(clock, interval) -> None:
    def broken_complete() -> None:
        raise RuntimeError("sound failed")

    recorder = Recorder()
    engine = TimerEngine(on_complete=broken_complete, clock=clock, interval_scheduler=interval)
    engine.subscribe(on_complete=recorder.on_complete)
    engine.start(1_000)

    clock.advance(1_000)
    interval.fire()

    assert not engine.is_running
    assert not interval.is_armed
    assert recorder.completions == 1


def test_unsubscribe_stops_callbacks(clock, interval) -> None:
    recorder = Recorder()
    engine = TimerEngine(clock=clock, interval_scheduler=interval)
    unsubscribe = engine.subscribe(on_tick=recorder.on_tick)
    engine.start(10_000)

    clock.advance(1_000)
    interval.fire()
    unsubscribe()
    clock.advance(1_000)
    interval.fire()

    assert recorder.ticks == [9_000]


def test_restart_from_tick_listener_suppresses_stale_completion(clock, interval) -> None:
    recorder = Recorder()
    engine = TimerEngine(clock=clock, interval_scheduler=interval)

    def restart_on_zero(remaining: int) -> None:
        if remaining == 0:
            engine.start(5_000, TimerMode.BREAK)

    engine.subscribe(on_tick=restart_on_zero, on_complete=recorder.on_complete)
    engine.start(1_000, TimerMode.FOCUS)
    clock.advance(1_000)
    interval.fire()

    assert recorder.completions == 0
    assert engine.mode == TimerMode.BREAK
    assert engine.is_running


def test_set_target_time_in_future_resumes_loop(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.set_target_time(T0 + 90_000, TimerMode.FOCUS, started_at=T0 - 10_000)

    assert engine.is_running
    assert interval.is_armed
    assert engine.get_remaining() == 90_000
    assert engine.get_state().started_at == T0 - 10_000


def test_set_target_time_in_past_stays_halted(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.set_target_time(T0 - 1, TimerMode.BREAK)

    assert not engine.is_running
    assert not interval.is_armed
    assert engine.get_remaining() == 0
    assert engine.get_state().started_at == T0


def test_set_target_time_paused_restores_pause(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.set_target_time(T0 + 20_000, TimerMode.FOCUS, started_at=T0 - 5_000, paused_at=T0 - 1_000)

    assert not engine.is_running
    assert engine.get_remaining() == 0

    engine.resume()
    assert engine.get_remaining() == 21_000


def test_add_and_subtract_time(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.add_time(5_000)
    assert engine.get_state().target_at is None

    engine.start(10_000)
    engine.add_time(5_000)
    assert engine.get_remaining() == 15_000

    engine.subtract_time(3_000)
    assert engine.get_remaining() == 12_000

    engine.subtract_time(60_000)
    assert engine.get_state().target_at == clock.now
    assert engine.get_remaining() == 0

    with pytest.raises(ValueError):
        engine.add_time(-1)
    with pytest.raises(ValueError):
        engine.subtract_time(-1)


def test_subtract_while_paused_is_floored_at_pause(clock, interval) -> None:
    engine = make_engine(clock, interval)
    engine.start(10_000)
    clock.advance(4_000)
    engine.pause()
    clock.advance(60_000)

    engine.subtract_time(2_000)
    state = engine.get_state()
    assert state.target_at - state.paused_at == 4_000

    engine.subtract_time(60_000)
    assert engine.get_state().target_at == engine.get_state().paused_at

    engine.resume()
    assert engine.get_remaining() == 0


def test_visibility_switches_strategy_without_touching_target(clock, interval, frame) -> None:
    source = VisibilitySource(visible=True)
    engine = make_engine(clock, interval, frame_scheduler=frame, visibility=source)
    engine.start(60_000)

    assert engine.strategy == SchedulingStrategy.FRAME
    assert frame.is_armed and not interval.is_armed

    source.set_visible(False)
    assert engine.strategy == SchedulingStrategy.INTERVAL
    assert interval.is_armed and not frame.is_armed
    assert engine.get_state().target_at == T0 + 60_000

    clock.advance(1_000)
    source.set_visible(True)
    assert engine.strategy == SchedulingStrategy.FRAME
    assert frame.is_armed and not interval.is_armed
    assert engine.get_state().target_at == T0 + 60_000


def test_hidden_engine_starts_on_interval_scheduler(clock, interval, frame) -> None:
    source = VisibilitySource(visible=False)
    engine = make_engine(clock, interval, frame_scheduler=frame, visibility=source)
    engine.start(60_000)

    assert engine.strategy == SchedulingStrategy.INTERVAL
    assert not frame.is_armed


def test_becoming_visible_corrects_drift(clock, interval, frame) -> None:
    recorder = Recorder()
    source = VisibilitySource(visible=False)
    engine = make_engine(clock, interval, recorder, frame_scheduler=frame, visibility=source)
    engine.start(60_000)

    clock.advance(30_000)
    source.set_visible(True)

    assert recorder.drifts == [29_000]
    assert recorder.ticks == [30_000]
    assert engine.strategy == SchedulingStrategy.FRAME


def test_becoming_visible_after_expiry_completes_once(clock, interval, frame) -> None:
    recorder = Recorder()
    source = VisibilitySource(visible=False)
    engine = make_engine(clock, interval, recorder, frame_scheduler=frame, visibility=source)
    engine.start(10_000)

    clock.advance(120_000)
    source.set_visible(True)
    frame.fire()
    interval.fire()

    assert recorder.completions == 1
    assert engine.strategy is None
    assert not frame.is_armed and not interval.is_armed


def test_destroy_halts_everything(clock, interval, frame) -> None:
    recorder = Recorder()
    source = VisibilitySource(visible=True)
    engine = make_engine(clock, interval, recorder, frame_scheduler=frame, visibility=source)
    engine.start(10_000)

    engine.destroy()
    source.set_visible(False)
    clock.advance(20_000)
    frame.fire()
    interval.fire()

    assert not frame.is_armed and not interval.is_armed
    assert engine.visibility is None
    assert recorder.ticks == []
    assert recorder.completions == 0
