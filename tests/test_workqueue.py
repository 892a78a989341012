"""
작업 큐 테스트
"""

import threading
import pytest
from tunnel_lb_agent.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_rate_limiter_backoff():
    """지수 백오프 및 상한"""
    limiter = ItemExponentialFailureRateLimiter(base_delay=1.0, max_delay=5.0)

    assert [limiter.when("a") for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert limiter.num_requeues("a") == 5

    limiter.forget("a")
    assert limiter.num_requeues("a") == 0
    assert limiter.when("a") == 1.0


def test_default_rate_limiter_delays():
    """기본 지연 5ms부터 시작"""
    limiter = ItemExponentialFailureRateLimiter()
    assert limiter.when("x") == pytest.approx(0.005)
    assert limiter.when("x") == pytest.approx(0.01)


def test_dedup_pending():
    """대기 중인 동일 키는 한 번만"""
    queue = RateLimitingQueue()
    queue.add("default/a")
    queue.add("default/a")
    queue.add("default/b")

    assert len(queue) == 2
    assert queue.get() == ("default/a", False)
    assert queue.get() == ("default/b", False)


def test_readd_while_processing_requeued_on_done():
    """처리 중 추가된 키는 done 후 한 번 재큐잉"""
    queue = RateLimitingQueue()
    queue.add("k")
    item, _ = queue.get()

    queue.add("k")
    queue.add("k")
    assert len(queue) == 0

    queue.done(item)
    assert len(queue) == 1
    assert queue.get() == ("k", False)


def test_get_timeout():
    """타임아웃 시 (None, False)"""
    queue = RateLimitingQueue()
    assert queue.get(timeout=0.01) == (None, False)


def test_add_after_uses_clock():
    """지연 항목은 준비 시각 이후에만 반환"""
    clock = FakeClock()
    queue = RateLimitingQueue(clock=clock)
    queue.add_after("k", 10)

    assert queue.get(timeout=0) == (None, False)

    clock.now = 10.0
    assert queue.get(timeout=0) == ("k", False)


def test_add_after_keeps_earliest():
    """같은 키는 더 이른 시각 유지"""
    clock = FakeClock()
    queue = RateLimitingQueue(clock=clock)
    queue.add_after("k", 10)
    queue.add_after("k", 3)
    queue.add_after("k", 20)

    clock.now = 3.0
    assert queue.get(timeout=0) == ("k", False)
    queue.done("k")

    clock.now = 30.0
    assert queue.get(timeout=0) == (None, False)


def test_add_rate_limited_and_forget():
    """재시도 횟수 기록 및 초기화"""
    queue = RateLimitingQueue()
    queue.add_rate_limited("k")
    queue.add_rate_limited("k")
    assert queue.num_requeues("k") == 2

    queue.forget("k")
    assert queue.num_requeues("k") == 0


def test_shutdown_discards_pending_items():
    """종료 후에는 남은 항목을 꺼내지 않고 바로 종료 신호"""
    queue = RateLimitingQueue()
    queue.add("a")
    queue.add_after("delayed", 60)
    queue.shut_down()
    queue.add("b")

    assert queue.shutting_down()
    assert queue.get() == (None, True)
    assert len(queue) == 0


def test_done_after_shutdown_does_not_requeue():
    """처리 중 종료되면 다시 추가된 키도 폐기"""
    queue = RateLimitingQueue()
    queue.add("k")
    item, _ = queue.get()
    queue.add("k")

    queue.shut_down()
    queue.done(item)

    assert len(queue) == 0
    assert queue.get() == (None, True)


def test_shutdown_wakes_blocked_getter():
    """블로킹된 get() 깨움"""
    queue = RateLimitingQueue()
    result = []

    thread = threading.Thread(target=lambda: result.append(queue.get()))
    thread.start()
    queue.shut_down()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert result == [(None, True)]


def test_concurrent_workers_never_share_key():
    """동일 키를 두 워커가 동시에 처리하지 않음"""
    queue = RateLimitingQueue()
    active = set()
    overlaps = []
    lock = threading.Lock()

    def worker():
        while True:
            item, shutdown = queue.get()
            if shutdown:
                return
            with lock:
                if item in active:
                    overlaps.append(item)
                active.add(item)
            with lock:
                active.discard(item)
            queue.done(item)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for i in range(200):
        queue.add(f"k{i % 5}")
    queue.shut_down()
    for thread in threads:
        thread.join(timeout=5)

    assert overlaps == []
