"""
감시 대상 리소스 모델
kubernetes 클라이언트 모델 객체(V1Ingress, V1Service) 또는 dict를
컨트롤러가 사용하는 WatchedResource로 변환
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

KIND_INGRESS = "ingress"
KIND_SERVICE = "service"

SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"

DEFAULT_ANNOTATION_PREFIX = "easy-tunnel-lb.quinnovator.com"


@dataclass(frozen=True)
class AnnotationKeys:
    """활성화/터널 ID 어노테이션 키"""
    prefix: str = DEFAULT_ANNOTATION_PREFIX

    @property
    def enabled(self) -> str:
        return f"{self.prefix}/enabled"

    @property
    def tunnel_id(self) -> str:
        return f"{self.prefix}/tunnel-id"


def get_field(obj: Any, attr: str, key: Optional[str] = None) -> Any:
    """모델 객체 속성 또는 dict 키 조회"""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key or attr)
    return getattr(obj, attr, None)


@dataclass
class WatchedResource:
    """Ingress 또는 LoadBalancer Service의 읽기 전용 스냅샷"""
    kind: str
    namespace: str
    name: str
    annotations: Dict[str, str] = field(default_factory=dict)
    ports: List[int] = field(default_factory=list)
    hostname: str = ""
    service_type: str = ""
    resource_version: str = ""

    @property
    def key(self) -> str:
        return meta_namespace_key(self.namespace, self.name)

    def is_enabled(self, keys: AnnotationKeys) -> bool:
        return keys.enabled in self.annotations

    def tunnel_id(self, keys: AnnotationKeys) -> str:
        return self.annotations.get(keys.tunnel_id, "")

    def qualifies(self, keys: AnnotationKeys) -> bool:
        """watch 대상 여부 (Service는 LoadBalancer 타입만)"""
        if not self.is_enabled(keys):
            return False
        if self.kind == KIND_SERVICE:
            return self.service_type == SERVICE_TYPE_LOAD_BALANCER
        return True

    @classmethod
    def from_object(cls, kind: str, obj: Any) -> "WatchedResource":
        if kind == KIND_INGRESS:
            return cls.from_ingress(obj)
        if kind == KIND_SERVICE:
            return cls.from_service(obj)
        raise ValueError(f"unsupported resource kind: {kind}")

    @classmethod
    def from_ingress(cls, ingress: Any) -> "WatchedResource":
        """Ingress에서 변환

        포트는 각 rule의 HTTP path backend service 포트 번호(0보다 큰 값)를
        선언 순서대로 모은다. 호스트명은 첫 번째 rule의 host.
        """
        metadata = get_field(ingress, "metadata")
        spec = get_field(ingress, "spec")
        rules = get_field(spec, "rules") or []

        ports = []
        for rule in rules:
            http = get_field(rule, "http")
            for path in get_field(http, "paths") or []:
                backend = get_field(path, "backend")
                service = get_field(backend, "service")
                port = get_field(service, "port")
                number = get_field(port, "number")
                if number and int(number) > 0:
                    ports.append(int(number))

        hostname = (get_field(rules[0], "host") or "") if rules else ""

        return cls(
            kind=KIND_INGRESS,
            namespace=get_field(metadata, "namespace") or "",
            name=get_field(metadata, "name") or "",
            annotations=dict(get_field(metadata, "annotations") or {}),
            ports=ports,
            hostname=hostname,
            resource_version=get_field(metadata, "resource_version", "resourceVersion") or "",
        )

    @classmethod
    def from_service(cls, service: Any) -> "WatchedResource":
        """Service에서 변환 (spec.ports[].port, 호스트명 없음)"""
        metadata = get_field(service, "metadata")
        spec = get_field(service, "spec")

        ports = []
        for service_port in get_field(spec, "ports") or []:
            port = get_field(service_port, "port")
            if port is not None:
                ports.append(int(port))

        return cls(
            kind=KIND_SERVICE,
            namespace=get_field(metadata, "namespace") or "",
            name=get_field(metadata, "name") or "",
            annotations=dict(get_field(metadata, "annotations") or {}),
            ports=ports,
            service_type=get_field(spec, "type") or "",
            resource_version=get_field(metadata, "resource_version", "resourceVersion") or "",
        )


def meta_namespace_key(namespace: str, name: str) -> str:
    """namespace/name 키 (네임스페이스가 없으면 name)"""
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_meta_namespace_key(key: str):
    """키를 (namespace, name)으로 분리

    Raises:
        ValueError: 형식이 잘못된 키
    """
    if not isinstance(key, str):
        raise ValueError(f"expected string key, got {key!r}")
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")
