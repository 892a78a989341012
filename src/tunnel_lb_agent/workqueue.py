"""
작업 큐 모듈
중복 제거, 지연 추가, 항목별 지수 백오프 재시도, 종료 지원

- 대기 중인 동일 키는 한 번만 큐에 들어간다
- 처리 중인 키가 다시 추가되면 done() 호출 시점에 한 번 재큐잉된다
- shut_down() 이후 새 항목은 받지 않고, 남은 항목도 꺼내지 않고 바로 종료를 알린다
"""

import heapq
import itertools
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class ItemExponentialFailureRateLimiter:
    """항목별 실패 횟수에 따른 지수 백오프 (base * 2^n, max_delay 상한)"""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1

        # 오버플로 방지
        if exp > 62:
            return self.max_delay
        return min(self.base_delay * (2 ** exp), self.max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable):
        with self._lock:
            self._failures.pop(item, None)


class RateLimitingQueue:
    """중복 제거 + 속도 제한 재시도 작업 큐"""

    def __init__(self, name: str = "", rate_limiter: Optional[ItemExponentialFailureRateLimiter] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.rate_limiter = rate_limiter or ItemExponentialFailureRateLimiter()
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque = deque()
        self._dirty: set = set()
        self._processing: set = set()
        self._waiting: list = []
        self._waiting_ready: Dict[Hashable, float] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, item: Hashable):
        """항목 추가 (대기 중이면 무시)"""
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item: Hashable):
        if self._shutting_down:
            return
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: Hashable, delay: float):
        """delay초 후 항목 추가"""
        with self._cond:
            if self._shutting_down:
                return
            if delay <= 0:
                self._add_locked(item)
                return

            ready_at = self._clock() + delay
            existing = self._waiting_ready.get(item)
            if existing is not None and existing <= ready_at:
                return
            self._waiting_ready[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._cond.notify()

    def add_rate_limited(self, item: Hashable):
        """rate limiter가 정한 지연 후 재추가"""
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable):
        """재시도 이력 초기화"""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)

    def _promote_waiting_locked(self) -> Optional[float]:
        """준비된 지연 항목을 큐로 옮기고 다음 준비 시각 반환"""
        now = self._clock()
        while self._waiting:
            ready_at, _, item = self._waiting[0]
            if self._waiting_ready.get(item) != ready_at:
                # 더 이른 시각으로 대체된 항목
                heapq.heappop(self._waiting)
                continue
            if ready_at > now:
                return ready_at
            heapq.heappop(self._waiting)
            del self._waiting_ready[item]
            self._add_locked(item)
        return None

    def get(self, timeout: Optional[float] = None) -> Tuple[Any, bool]:
        """다음 항목을 꺼냄

        Returns:
            (item, shutdown): 종료되었으면 남은 항목과 관계없이 (None, True),
            timeout 내에 항목이 없으면 (None, False)
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None, True

                next_ready = self._promote_waiting_locked()

                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False

                now = self._clock()
                wait_for = None
                if next_ready is not None:
                    wait_for = max(0.0, next_ready - now)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None, False
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(wait_for)

    def done(self, item: Hashable):
        """처리 완료 표시 (처리 중 다시 추가된 항목은 재큐잉)"""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self):
        """새 항목 수신 중단, 남은 항목 폐기, 대기 중인 get() 깨움"""
        with self._cond:
            self._shutting_down = True
            self._queue.clear()
            self._dirty.clear()
            self._waiting.clear()
            self._waiting_ready.clear()
            self._cond.notify_all()

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down
