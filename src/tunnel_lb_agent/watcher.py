"""
리소스 Watcher
활성화 어노테이션이 있는 리소스만 작업 큐에 넣고, 워커가 키를 꺼내
최신 상태를 다시 조회한 뒤 Reconciler를 실행 (실패 시 백오프 재시도)

삭제 이벤트는 큐를 거치지 않고 즉시 Reconciler.handle_delete로 전달한다.
중지 시 워커는 처리 중인 항목만 마치고 큐에 남은 키는 버린다.
"""

import threading
from typing import List, Optional
from .informer import Informer
from .logger import get_logger
from .resources import AnnotationKeys, WatchedResource, split_meta_namespace_key
from .workqueue import RateLimitingQueue

INFORMER_JOIN_TIMEOUT = 5.0


class WatcherError(Exception):
    """Watcher 실행/조회 실패"""


class ResourceWatcher:
    """단일 리소스 종류(ingress 또는 service)에 대한 watcher"""

    def __init__(self, kind: str, cluster, reconciler, annotation_keys: AnnotationKeys = AnnotationKeys(),
                 namespace: str = "", workers: int = 1, resync_timeout: int = 300,
                 informer: Optional[Informer] = None, queue: Optional[RateLimitingQueue] = None):
        self.kind = kind
        self.cluster = cluster
        self.reconciler = reconciler
        self.keys = annotation_keys
        self.namespace = namespace
        self.workers = max(1, int(workers))
        self.logger = get_logger().with_fields(kind=kind)
        self.queue = queue or RateLimitingQueue(name=f"{kind}s")
        self.informer = informer or Informer(kind, cluster, namespace=namespace, timeout_seconds=resync_timeout)
        self.informer.add_event_handler(
            on_add=self.handle_resource,
            on_update=lambda old, new: self.handle_resource(new),
            on_delete=self.handle_delete,
        )
        self._worker_threads: List[threading.Thread] = []
        self._stop_event = threading.Event()

    def handle_resource(self, resource: WatchedResource):
        """추가/변경 이벤트: 조건을 만족하면 키를 큐에 추가"""
        if not resource.qualifies(self.keys):
            return
        self.logger.debug("Enqueue", key=resource.key)
        self.queue.add(resource.key)

    def handle_delete(self, resource: WatchedResource):
        """삭제 이벤트: 조건을 만족하면 즉시 삭제 처리 (재시도 없음)"""
        if not resource.qualifies(self.keys):
            return
        try:
            self.reconciler.handle_delete(resource)
        except Exception as e:
            self.logger.error(f"Error handling {self.kind} deletion", key=resource.key, error=e)

    def process_next_work_item(self) -> bool:
        """큐에서 항목 하나 처리 (큐가 종료되면 False)"""
        key, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            self._sync(key)
        except Exception as e:
            self.logger.error(
                f"Error processing {self.kind}",
                key=key,
                error=e,
                requeues=self.queue.num_requeues(key),
            )
            self.queue.add_rate_limited(key)
        finally:
            self.queue.done(key)
        return True

    def _sync(self, key):
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError as e:
            # 재시도해도 해결되지 않으므로 버림
            self.queue.forget(key)
            self.logger.error("Dropping invalid resource key", key=key, error=e)
            return

        try:
            resource = self.cluster.get_resource(self.kind, namespace, name)
        except Exception as e:
            raise WatcherError(f"failed to get {self.kind} {key}: {e}") from e

        if resource is None:
            # 이벤트와 처리 사이에 삭제된 리소스
            self.logger.debug("Resource no longer exists", key=key)
            self.queue.forget(key)
            return

        self.reconciler.reconcile(resource)
        self.queue.forget(key)

    def run_worker(self):
        """중지 신호가 오면 현재 항목까지만 처리하고 종료"""
        while not self._stop_event.is_set():
            if not self.process_next_work_item():
                return

    def run(self, stop_event: threading.Event):
        """informer와 워커 실행 (stop_event가 설정될 때까지 블로킹)

        Raises:
            WatcherError: informer 캐시 동기화 실패
        """
        self._stop_event = stop_event
        self.logger.info("Starting watcher", workers=self.workers, namespace=self.namespace or "*")
        informer_thread = threading.Thread(
            target=self.informer.run,
            args=(stop_event,),
            name=f"{self.kind}-informer",
            daemon=True,
        )
        informer_thread.start()

        try:
            if not self.informer.wait_for_sync(stop_event):
                if stop_event.is_set():
                    return
                raise WatcherError(f"failed to sync {self.kind} informer cache")

            for index in range(self.workers):
                thread = threading.Thread(
                    target=self.run_worker,
                    name=f"{self.kind}-worker-{index}",
                    daemon=True,
                )
                thread.start()
                self._worker_threads.append(thread)

            stop_event.wait()
        finally:
            self.shutdown()
            informer_thread.join(timeout=INFORMER_JOIN_TIMEOUT)

    def shutdown(self):
        """watch 중단, 큐 종료 (남은 키 폐기), 진행 중인 항목 완료 대기"""
        self.informer.stop()
        self.queue.shut_down()
        for thread in self._worker_threads:
            thread.join()
        self._worker_threads = []
        self.logger.info("Watcher stopped")
