import threading

from conftest import USER
from study_timer.controller import SessionController
from study_timer.dispatch import InlineDispatcher, PersistenceDispatcher
from study_timer.models import ControllerState
from study_timer.runner import TimerRunner


def test_background_dispatcher_runs_calls_in_order():
    calls = []
    dispatcher = PersistenceDispatcher()

    for i in range(5):
        dispatcher.submit(f"call {i}", calls.append, i)
    dispatcher.join()
    dispatcher.stop()

    assert calls == [0, 1, 2, 3, 4]


def test_background_failure_is_reported_and_worker_keeps_going(errors):
    calls = []
    dispatcher = PersistenceDispatcher(on_error=errors)

    def boom():
        raise RuntimeError("network down")

    dispatcher.submit("first", boom)
    dispatcher.submit("second", calls.append, "ok")
    dispatcher.join()
    dispatcher.stop()

    assert calls == ["ok"]
    assert [(d, str(e)) for d, e in errors.errors] == [("first", "network down")]


def test_inline_dispatcher_reports_without_raising(errors):
    dispatcher = InlineDispatcher(on_error=errors)

    dispatcher.submit("broken", int, "not a number")

    assert errors.errors[0][0] == "broken"
    assert isinstance(errors.errors[0][1], ValueError)


def test_controller_with_background_persistence(store, clock):
    controller = SessionController(store, USER, clock=clock)
    session_id = controller.start().session_id

    controller.pause()
    controller.dispatcher.join()

    assert store.get_session(session_id).is_paused
    assert len(store.get_pause_logs(session_id)) == 1
    controller.close()


def test_timer_runner_ticks_the_controller(controller):
    controller.start()
    ticked = threading.Event()
    controller.add_listener(lambda snapshot: ticked.set())
    runner = TimerRunner(controller, interval=0.01)

    runner.start()
    assert runner.is_running()
    assert ticked.wait(timeout=5)
    runner.stop()

    assert not runner.is_running()
    assert controller.remaining_seconds < 1500
    assert controller.state is ControllerState.RUNNING
