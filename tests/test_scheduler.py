import threading

from roomrelay.idle import ThreadScheduler


def _collect(n: int):
    done = threading.Event()
    ran: list[tuple[str, str]] = []

    def make(tag: str):
        def fn() -> None:
            ran.append((tag, threading.current_thread().name))
            if len(ran) == n:
                done.set()

        return fn

    return done, ran, make


def test_calls_run_in_deadline_order_on_one_thread() -> None:
    sched = ThreadScheduler(name="relay-test-timer")
    done, ran, make = _collect(3)
    try:
        sched.call_later(0.15, make("late"))
        sched.call_later(0.05, make("early"))
        sched.call_later(0.10, make("middle"))
        skipped = sched.call_later(0.12, make("cancelled"))
        skipped.cancel()

        assert done.wait(5.0)
    finally:
        sched.stop()

    assert [tag for tag, _ in ran] == ["early", "middle", "late"]
    assert {name for _, name in ran} == {"relay-test-timer"}


def test_rearming_does_not_start_more_threads() -> None:
    sched = ThreadScheduler(name="relay-test-timer")
    done, ran, make = _collect(1)
    try:
        before = threading.active_count()
        for _ in range(200):
            sched.call_later(60.0, make("never")).cancel()
        sched.call_later(0.0, make("now"))

        assert done.wait(5.0)
        assert threading.active_count() <= before + 1
    finally:
        sched.stop()

    assert ran[0][0] == "now"


def test_a_failing_callback_does_not_stop_the_worker() -> None:
    sched = ThreadScheduler()
    done, ran, make = _collect(1)

    def boom() -> None:
        raise RuntimeError("boom")

    try:
        sched.call_later(0.0, boom)
        sched.call_later(0.05, make("after"))
        assert done.wait(5.0)
    finally:
        sched.stop()


def test_calls_after_stop_never_run() -> None:
    sched = ThreadScheduler()
    sched.stop()
    call = sched.call_later(0.0, lambda: None)
    assert call.cancelled
