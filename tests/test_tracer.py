import threading

import pytest

from tracer import Tracer, global_tracer, trace


@trace
def _inner(x):
    return x * 2


@trace
def _outer(x):
    return _inner(x) + 1


@trace
def _explode():
    raise ValueError("boom")


@pytest.fixture
def tracing():
    global_tracer.reset()
    global_tracer.enable()
    yield global_tracer
    global_tracer.disable()
    global_tracer.reset()


def test_nested_calls_form_one_tree(tracing):
    assert _outer(3) == 7

    (entry,) = tracing.get_trace()
    assert entry["function"] == "test_tracer._outer"
    assert entry["return_value"] == "7"
    assert entry["nested_calls"][0]["function"] == "test_tracer._inner"


def test_exceptions_are_recorded_and_reraised(tracing):
    with pytest.raises(ValueError):
        _explode()

    (entry,) = tracing.get_trace()
    assert entry["exception"] == "ValueError('boom')"


def test_each_thread_builds_its_own_tree(tracing):
    threads = [threading.Thread(target=_outer, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    log = tracing.get_trace()
    assert len(log) == 4
    assert all(len(entry["nested_calls"]) == 1 for entry in log)


def test_disabled_tracer_records_nothing():
    tracer = Tracer()
    assert not tracer.enabled
    global_tracer.reset()

    _outer(1)

    assert global_tracer.get_trace() == []
