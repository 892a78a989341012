"""
Kubernetes 클러스터 클라이언트
Ingress/Service 조회, list/watch 함수 제공 및 LoadBalancer status 반영
"""

from typing import Callable, List, Optional, Tuple
from kubernetes import client, config
from kubernetes.client import ApiException
from .logger import get_logger
from .resources import KIND_INGRESS, KIND_SERVICE, WatchedResource


def load_kube_config():
    """클러스터 내부 설정을 먼저 시도하고 실패하면 로컬 kubeconfig 사용"""
    logger = get_logger()
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Using local kubeconfig")


class ClusterClient:
    """Kubernetes API 래퍼"""

    def __init__(self, core_api: Optional[client.CoreV1Api] = None,
                 networking_api: Optional[client.NetworkingV1Api] = None):
        self.core_api = core_api or client.CoreV1Api()
        self.networking_api = networking_api or client.NetworkingV1Api()
        self.logger = get_logger()

    def list_function(self, kind: str, namespace: str = "") -> Tuple[Callable, dict]:
        """watch.Watch().stream()에 넘길 list 함수와 인자"""
        if kind == KIND_INGRESS:
            if namespace:
                return self.networking_api.list_namespaced_ingress, {"namespace": namespace}
            return self.networking_api.list_ingress_for_all_namespaces, {}
        if kind == KIND_SERVICE:
            if namespace:
                return self.core_api.list_namespaced_service, {"namespace": namespace}
            return self.core_api.list_service_for_all_namespaces, {}
        raise ValueError(f"unsupported resource kind: {kind}")

    def list_resources(self, kind: str, namespace: str = "") -> Tuple[List[WatchedResource], str]:
        """리소스 목록과 list의 resourceVersion 반환"""
        func, kwargs = self.list_function(kind, namespace)
        result = func(**kwargs)
        items = [WatchedResource.from_object(kind, obj) for obj in (result.items or [])]
        resource_version = getattr(result.metadata, "resource_version", "") or ""
        return items, resource_version

    def get_resource(self, kind: str, namespace: str, name: str) -> Optional[WatchedResource]:
        """리소스 조회 (없으면 None)"""
        try:
            if kind == KIND_INGRESS:
                obj = self.networking_api.read_namespaced_ingress(name, namespace)
            elif kind == KIND_SERVICE:
                obj = self.core_api.read_namespaced_service(name, namespace)
            else:
                raise ValueError(f"unsupported resource kind: {kind}")
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return WatchedResource.from_object(kind, obj)

    def set_ingress_load_balancer(self, resource: WatchedResource, hostname: str):
        """Ingress status.loadBalancer에 호스트명 반영"""
        body = {"status": {"loadBalancer": {"ingress": [{"hostname": hostname}]}}}
        self.networking_api.patch_namespaced_ingress_status(resource.name, resource.namespace, body)
        self.logger.info("Ingress load balancer status updated", key=resource.key, hostname=hostname)

    def set_service_load_balancer(self, resource: WatchedResource, external_ip: str, external_host: str):
        """Service status.loadBalancer에 IP/호스트명 반영"""
        entry = {}
        if external_ip:
            entry["ip"] = external_ip
        if external_host:
            entry["hostname"] = external_host
        body = {"status": {"loadBalancer": {"ingress": [entry] if entry else []}}}
        self.core_api.patch_namespaced_service_status(resource.name, resource.namespace, body)
        self.logger.info(
            "Service load balancer status updated",
            key=resource.key,
            ip=external_ip or "-",
            hostname=external_host or "-",
        )
