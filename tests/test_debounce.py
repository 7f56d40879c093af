import threading
import time

from annoku.debounce import DebouncedTask


class Recorder:
    def __init__(self) -> None:
        self.calls = 0
        self.called = threading.Event()

    def __call__(self) -> None:
        self.calls += 1
        self.called.set()


def test_rapid_arms_collapse_into_one_run() -> None:
    recorder = Recorder()
    task = DebouncedTask(recorder, delay_ms=100)
    for _ in range(10):
        task.arm()
    assert task.pending
    assert recorder.calls == 0
    assert recorder.called.wait(2)
    time.sleep(0.2)
    assert recorder.calls == 1
    assert not task.pending


def test_cancel_prevents_run() -> None:
    recorder = Recorder()
    task = DebouncedTask(recorder, delay_ms=50)
    task.arm()
    assert task.cancel() is True
    assert task.cancel() is False
    time.sleep(0.15)
    assert recorder.calls == 0


def test_flush_runs_immediately_and_drops_timer() -> None:
    recorder = Recorder()
    task = DebouncedTask(recorder, delay_ms=100)
    task.arm()
    task.flush()
    assert recorder.calls == 1
    time.sleep(0.2)
    assert recorder.calls == 1


def test_zero_delay_runs_synchronously() -> None:
    recorder = Recorder()
    DebouncedTask(recorder, delay_ms=0).arm()
    assert recorder.calls == 1
