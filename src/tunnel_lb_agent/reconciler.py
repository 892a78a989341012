"""
Reconciler
리소스 하나를 원격 터널 레코드 및 로컬 WireGuard 터널과 수렴시킴

매 호출마다 원격 API를 호출한다 (변경 여부 비교 없음).
"""

from .api_client import TunnelRequest
from .logger import get_logger
from .resources import KIND_SERVICE, AnnotationKeys, WatchedResource
from .tunnel_manager import TunnelConfig


class ReconcileError(Exception):
    """reconcile/삭제 단계 실패 (원인 예외는 __cause__)"""

    def __init__(self, stage: str, key: str, cause: Exception):
        super().__init__(f"{key}: failed to {stage}: {cause}")
        self.stage = stage
        self.key = key


class Reconciler:
    """Ingress/Service 공용 reconciler

    Args:
        cluster: set_ingress_load_balancer / set_service_load_balancer 제공
        api: create_tunnel / update_tunnel / delete_tunnel 제공
        tunnels: create_tunnel / update_tunnel / delete_tunnel 제공
    """

    def __init__(self, cluster, api, tunnels, annotation_keys: AnnotationKeys = AnnotationKeys()):
        self.cluster = cluster
        self.api = api
        self.tunnels = tunnels
        self.keys = annotation_keys
        self.logger = get_logger()

    def build_request(self, resource: WatchedResource) -> TunnelRequest:
        """리소스에서 터널 요청 생성"""
        return TunnelRequest(
            ingress_name=resource.name,
            ingress_namespace=resource.namespace,
            hostname=resource.hostname,
            ports=list(resource.ports),
            annotations=dict(resource.annotations),
        )

    def reconcile(self, resource: WatchedResource):
        """원격 터널 create/update -> 로컬 터널 create/update -> status 반영

        Raises:
            ReconcileError: 어느 단계든 실패하면 즉시 중단
        """
        if not resource.is_enabled(self.keys):
            return

        log = self.logger.with_fields(kind=resource.kind, key=resource.key)
        request = self.build_request(resource)
        tunnel_id = resource.tunnel_id(self.keys)
        creating = not tunnel_id

        if creating:
            log.info("Creating tunnel", ports=request.ports)
            stage = "create tunnel"
            try:
                response = self.api.create_tunnel(request)
            except Exception as e:
                raise ReconcileError(stage, resource.key, e) from e
        else:
            log.info("Updating tunnel", tunnel_id=tunnel_id, ports=request.ports)
            stage = "update tunnel"
            try:
                response = self.api.update_tunnel(tunnel_id, request)
            except Exception as e:
                raise ReconcileError(stage, resource.key, e) from e

        local_config = TunnelConfig(tunnel_id=response.tunnel_id, wg_config=response.wg_config)
        stage = "create local tunnel" if creating else "update local tunnel"
        try:
            if creating:
                self.tunnels.create_tunnel(local_config)
            else:
                self.tunnels.update_tunnel(local_config)
        except Exception as e:
            raise ReconcileError(stage, resource.key, e) from e

        try:
            self._update_status(resource, response.external_ip, response.external_host)
        except Exception as e:
            raise ReconcileError("update status", resource.key, e) from e

        log.info("Reconciled", tunnel_id=response.tunnel_id, status=response.status or "-")

    def _update_status(self, resource: WatchedResource, external_ip: str, external_host: str):
        if resource.kind == KIND_SERVICE:
            if external_ip or external_host:
                self.cluster.set_service_load_balancer(resource, external_ip, external_host)
            return

        # Ingress status는 호스트명만 지원
        if external_host:
            self.cluster.set_ingress_load_balancer(resource, external_host)

    def handle_delete(self, resource: WatchedResource):
        """원격 터널 삭제 후 로컬 터널 삭제

        원격 삭제 후 로컬 삭제가 실패하면 로컬 프로세스와 설정 파일이 남으며
        리소스가 이미 사라졌으므로 재시도 경로가 없다.

        Raises:
            ReconcileError: 첫 번째 실패
        """
        tunnel_id = resource.tunnel_id(self.keys)
        if not tunnel_id:
            return

        log = self.logger.with_fields(kind=resource.kind, key=resource.key, tunnel_id=tunnel_id)
        log.info("Deleting tunnel")

        try:
            self.api.delete_tunnel(tunnel_id)
        except Exception as e:
            raise ReconcileError("delete tunnel from server", resource.key, e) from e

        try:
            self.tunnels.delete_tunnel(tunnel_id)
        except Exception as e:
            log.error("Remote tunnel deleted but local tunnel left running", error=e)
            raise ReconcileError("delete local tunnel", resource.key, e) from e

        log.info("Tunnel deleted")
