"""
Informer
list + watch로 리소스 변경을 (이벤트, 리소스) 형태로 핸들러에 전달하고
마지막으로 본 객체를 캐시에 유지

- 최초 list 결과는 add 이벤트로 전달한 뒤 동기화 완료로 표시
- 410 Gone이면 다시 list하고, 캐시에는 있지만 목록에 없는 객체는
  마지막으로 본 상태로 delete 이벤트를 합성 (최종 상태를 모르는 삭제)
- 401/403은 권한 문제로 보고 재시도하지 않음
"""

import random
import threading
from typing import Any, Callable, Dict, Iterable, Optional
from kubernetes import watch
from kubernetes.client import ApiException
from .logger import get_logger
from .resources import WatchedResource, get_field, meta_namespace_key

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"
EVENT_BOOKMARK = "BOOKMARK"
EVENT_ERROR = "ERROR"

MAX_BACKOFF_SECONDS = 30


class Informer:
    """단일 리소스 종류에 대한 변경 피드"""

    def __init__(self, kind: str, cluster, namespace: str = "", timeout_seconds: int = 300,
                 watch_factory: Callable[[], Any] = watch.Watch):
        self.kind = kind
        self.cluster = cluster
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self.watch_factory = watch_factory
        self.logger = get_logger().with_fields(kind=kind)

        self._cache: Dict[str, WatchedResource] = {}
        self._cache_lock = threading.Lock()
        self._handlers = []
        self._synced = threading.Event()
        self._finished = threading.Event()
        self._stop = threading.Event()
        self._active_watch = None
        self._watch_lock = threading.Lock()
        self._resource_version: Optional[str] = None

    def add_event_handler(self, on_add: Optional[Callable] = None, on_update: Optional[Callable] = None,
                          on_delete: Optional[Callable] = None):
        """on_add(obj), on_update(old, new), on_delete(obj) 등록"""
        self._handlers.append((on_add, on_update, on_delete))

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    def get(self, key: str) -> Optional[WatchedResource]:
        """캐시에서 마지막으로 본 객체 조회"""
        with self._cache_lock:
            return self._cache.get(key)

    def keys(self):
        with self._cache_lock:
            return sorted(self._cache)

    def wait_for_sync(self, stop_event: threading.Event, poll_interval: float = 0.1) -> bool:
        """최초 동기화 대기 (중지되거나 informer가 끝나면 False)"""
        while not self._synced.wait(poll_interval):
            if stop_event.is_set() or self._stop.is_set() or self._finished.is_set():
                return self._synced.is_set()
        return True

    def stop(self):
        """watch 스트림 중단"""
        self._stop.set()
        with self._watch_lock:
            active = self._active_watch
        if active is not None:
            active.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._stop.is_set()

    def _dispatch(self, event: str, obj: WatchedResource, old: Optional[WatchedResource] = None):
        for on_add, on_update, on_delete in self._handlers:
            try:
                if event == EVENT_ADDED and on_add:
                    on_add(obj)
                elif event == EVENT_MODIFIED and on_update:
                    on_update(old, obj)
                elif event == EVENT_DELETED and on_delete:
                    on_delete(obj)
            except Exception:
                self.logger.exception("Event handler failed", event=event, key=obj.key)

    def replace(self, items: Iterable[WatchedResource]):
        """list 결과로 캐시를 교체하고 차이를 이벤트로 전달"""
        fresh = {item.key: item for item in items}
        with self._cache_lock:
            previous = self._cache
            self._cache = dict(fresh)

        for key, item in fresh.items():
            old = previous.get(key)
            if old is None:
                self._dispatch(EVENT_ADDED, item)
            else:
                self._dispatch(EVENT_MODIFIED, item, old)

        for key, old in previous.items():
            if key not in fresh:
                self.logger.info("Object disappeared during re-list", key=key)
                self._dispatch(EVENT_DELETED, old)

    def handle_event(self, event_type: str, raw: Any):
        """watch 이벤트 하나를 캐시와 핸들러에 반영"""
        if event_type == EVENT_BOOKMARK:
            self._remember_version(raw)
            return
        if event_type not in (EVENT_ADDED, EVENT_MODIFIED, EVENT_DELETED):
            self.logger.warning("Ignoring watch event", event=event_type)
            return

        resource = self._decode(raw)
        if event_type == EVENT_DELETED:
            key = resource.key if resource is not None else self._raw_key(raw)
            with self._cache_lock:
                cached = self._cache.pop(key, None) if key else None
            target = resource or cached
            if target is None:
                self.logger.error("Error decoding deleted object, invalid type")
                return
            self._remember_version(raw)
            self._dispatch(EVENT_DELETED, target)
            return

        if resource is None:
            self.logger.error("Error decoding object, invalid type", event=event_type)
            return

        with self._cache_lock:
            old = self._cache.get(resource.key)
            self._cache[resource.key] = resource
        self._remember_version(raw)

        if old is None:
            self._dispatch(EVENT_ADDED, resource)
        else:
            self._dispatch(EVENT_MODIFIED, resource, old)

    def _decode(self, raw: Any) -> Optional[WatchedResource]:
        if raw is None:
            return None
        try:
            resource = WatchedResource.from_object(self.kind, raw)
        except (AttributeError, TypeError, ValueError):
            return None
        if not resource.name:
            return None
        return resource

    @staticmethod
    def _raw_key(raw: Any) -> str:
        metadata = get_field(raw, "metadata")
        name = get_field(metadata, "name")
        if not name:
            return ""
        return meta_namespace_key(get_field(metadata, "namespace") or "", name)

    def _remember_version(self, raw: Any):
        metadata = get_field(raw, "metadata")
        version = get_field(metadata, "resource_version", "resourceVersion")
        if version:
            self._resource_version = version

    def _list(self):
        items, resource_version = self.cluster.list_resources(self.kind, self.namespace)
        self._resource_version = resource_version or None
        self.replace(items)

    @staticmethod
    def _is_forbidden(exc: ApiException) -> bool:
        return exc.status in (401, 403)

    def _backoff(self, stop_event: threading.Event, seconds: float) -> float:
        jittered = seconds * (0.5 + random.random())
        stop_event.wait(timeout=jittered)
        return min(seconds * 2, MAX_BACKOFF_SECONDS)

    def run(self, stop_event: threading.Event):
        """list 후 watch (중지될 때까지 블로킹)"""
        try:
            self._run(stop_event)
        finally:
            self._finished.set()

    def _run(self, stop_event: threading.Event):
        backoff = 1
        while not self._should_stop(stop_event):
            try:
                self._list()
                self._synced.set()
                self.logger.info("Informer cache synced", resource_version=self._resource_version)
                break
            except ApiException as e:
                if self._is_forbidden(e):
                    self.logger.error("Kubernetes API access denied during list, check RBAC", status=e.status)
                    return
                self.logger.error("Initial list failed", error=e)
            except Exception as e:
                self.logger.exception("Unexpected error during initial list", error=e)
            backoff = self._backoff(stop_event, backoff)

        backoff = 1
        while not self._should_stop(stop_event):
            watcher = self.watch_factory()
            with self._watch_lock:
                self._active_watch = watcher
            try:
                func, kwargs = self.cluster.list_function(self.kind, self.namespace)
                if self._resource_version:
                    kwargs["resource_version"] = self._resource_version
                stream = watcher.stream(func, timeout_seconds=self.timeout_seconds, **kwargs)
                for event in stream:
                    if self._should_stop(stop_event):
                        break
                    event_type = str(event.get("type", ""))
                    raw = event.get("object")
                    if event_type == EVENT_ERROR:
                        code = get_field(raw, "code")
                        if code == 410:
                            raise ApiException(status=410, reason="Gone")
                        self.logger.warning("Watch error event", code=code)
                        continue
                    self.handle_event(event_type, raw)
                backoff = 1
            except ApiException as e:
                if e.status == 410:
                    self.logger.warning("Watch resource version expired, re-listing")
                    try:
                        self._list()
                    except ApiException as relist_exc:
                        if self._is_forbidden(relist_exc):
                            self.logger.error("Kubernetes API access denied during re-list, check RBAC",
                                              status=relist_exc.status)
                            return
                        self.logger.error("Failed to re-list after 410", error=relist_exc)
                        self._resource_version = None
                        backoff = self._backoff(stop_event, backoff)
                    continue
                if self._is_forbidden(e):
                    self.logger.error("Kubernetes API watch denied, check RBAC", status=e.status)
                    return
                self.logger.error("Kubernetes API watch error", error=e)
                backoff = self._backoff(stop_event, backoff)
            except Exception as e:
                self.logger.exception("Unexpected watch error", error=e)
                backoff = self._backoff(stop_event, backoff)
            finally:
                watcher.stop()
                with self._watch_lock:
                    if self._active_watch is watcher:
                        self._active_watch = None
