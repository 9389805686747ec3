import threading

import pytest

from slamkit.index_reduce import IndexThreadReduce


def _recorder():
    calls = []
    lock = threading.Lock()

    def func(start, stop, stats):
        with lock:
            calls.append((start, stop))
        stats.num_stereo_calls += stop - start

    return calls, func


def test_chunks_cover_range_exactly_once():
    calls, func = _recorder()
    with IndexThreadReduce(4, True) as reducer:
        reducer.reduce(func, 3, 103)
        assert reducer.running_stats.num_stereo_calls == 100
    covered = sorted(i for start, stop in calls for i in range(start, stop))
    assert covered == list(range(3, 103))


def test_default_step_uses_at_most_one_chunk_per_thread():
    calls, func = _recorder()
    with IndexThreadReduce(4, True) as reducer:
        reducer.reduce(func, 0, 10)
        assert reducer.running_stats.num_stereo_calls == 10
    assert len(calls) <= 4
    assert sorted(calls)[0] == (0, 3)


def test_explicit_step_size():
    calls, func = _recorder()
    with IndexThreadReduce(3, True) as reducer:
        reducer.reduce(func, 0, 10, 4)
        assert reducer.running_stats.num_stereo_calls == 10
    assert sorted(calls) == [(0, 4), (4, 8), (8, 10)]


def test_stats_are_summed():
    _, func = _recorder()
    with IndexThreadReduce(4, True) as reducer:
        reducer.reduce(func, 0, 57, 5)
        reducer.reduce(func, 0, 10)
        assert reducer.running_stats.num_stereo_calls == 67


def test_single_threaded_calls_once_with_whole_range():
    calls, func = _recorder()
    with IndexThreadReduce(4, False) as reducer:
        reducer.reduce(func, 2, 20)
        assert calls == [(2, 20)]
        assert reducer.running_stats.num_stereo_calls == 18


def test_empty_range_calls_nothing():
    calls, func = _recorder()
    with IndexThreadReduce(2, True) as reducer:
        reducer.reduce(func, 5, 5)
        assert reducer.running_stats.num_stereo_calls == 0
    assert calls == []


def test_errors_propagate():
    def func(start, stop, stats):
        raise KeyError(start)

    with IndexThreadReduce(2, True) as reducer:
        with pytest.raises(KeyError):
            reducer.reduce(func, 0, 4)


def test_reduce_after_close_raises():
    _, func = _recorder()
    reducer = IndexThreadReduce(2, True)
    reducer.close()
    with pytest.raises(RuntimeError):
        reducer.reduce(func, 0, 4)


def test_negative_step_rejected():
    _, func = _recorder()
    with IndexThreadReduce(2, True) as reducer:
        with pytest.raises(ValueError):
            reducer.reduce(func, 0, 4, -1)


def test_zero_threads_rejected():
    with pytest.raises(ValueError):
        IndexThreadReduce(0, True)