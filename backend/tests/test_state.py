import threading

import pytest

from sitesearch.indexing.state import STOPPED_BY_USER, CrawlInterrupted, CrawlState


def test_try_start_only_once() -> None:
    state = CrawlState()
    assert state.try_start()
    assert not state.try_start()
    assert state.is_in_progress()


def test_concurrent_try_start_single_winner() -> None:
    state = CrawlState()
    barrier = threading.Barrier(16)
    wins: list[bool] = []
    lock = threading.Lock()

    def contend() -> None:
        barrier.wait()
        won = state.try_start()
        with lock:
            wins.append(won)

    threads = [threading.Thread(target=contend) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert wins.count(True) == 1


def test_check_stop_raises_after_request() -> None:
    state = CrawlState()
    state.try_start()
    state.check_stop()
    state.request_stop()
    assert state.is_stop_requested()
    with pytest.raises(CrawlInterrupted, match=STOPPED_BY_USER):
        state.check_stop()


def test_reset_allows_new_run() -> None:
    state = CrawlState()
    state.try_start()
    state.request_stop()
    state.reset()
    assert not state.is_in_progress()
    assert not state.is_stop_requested()
    assert state.try_start()
