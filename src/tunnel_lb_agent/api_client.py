"""
프로비저닝 API 클라이언트
터널 서버의 REST API(create/update/delete/status)를 호출
"""

import requests
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from .logger import get_logger

# 터널 상태 값
STATUS_ACTIVE = "active"
STATUS_PENDING = "pending"
STATUS_ERROR = "error"
STATUS_NOT_FOUND = "not_found"


class APIError(Exception):
    """프로비저닝 API 호출 실패

    status_code는 HTTP 응답을 받지 못한 경우 None이다.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class TunnelRequest:
    """터널 생성/업데이트 요청"""
    ingress_name: str
    ingress_namespace: str
    hostname: str = ""
    ports: List[int] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ingressName": self.ingress_name,
            "ingressNamespace": self.ingress_namespace,
            "hostname": self.hostname,
            "ports": list(self.ports),
            "annotations": dict(self.annotations),
        }


@dataclass
class TunnelResponse:
    """터널 생성/업데이트 응답"""
    tunnel_id: str
    status: str = ""
    external_ip: str = ""
    external_host: str = ""
    wg_config: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunnelResponse":
        return cls(
            tunnel_id=data.get("tunnelId") or "",
            status=data.get("status") or "",
            external_ip=data.get("externalIp") or "",
            external_host=data.get("externalHost") or "",
            wg_config=data.get("wgConfig") or "",
        )


@dataclass
class TunnelStatus:
    """터널 현재 상태"""
    tunnel_id: str
    status: str = ""
    error: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunnelStatus":
        return cls(
            tunnel_id=data.get("tunnelId") or "",
            status=data.get("status") or "",
            error=data.get("error") or "",
        )


class APIClient:
    """터널 서버 API 클라이언트"""

    def __init__(self, base_url: str, api_key: str, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = get_logger()

    def create_tunnel(self, req: TunnelRequest) -> TunnelResponse:
        """새 터널 생성"""
        try:
            data = self._do_request("POST", "/api/tunnels", req.to_dict())
        except APIError as e:
            raise APIError(f"create tunnel request failed: {e}", e.status_code, e.body) from e
        return TunnelResponse.from_dict(data)

    def update_tunnel(self, tunnel_id: str, req: TunnelRequest) -> TunnelResponse:
        """기존 터널 업데이트"""
        try:
            data = self._do_request("PUT", f"/api/tunnels/{tunnel_id}", req.to_dict())
        except APIError as e:
            raise APIError(f"update tunnel request failed: {e}", e.status_code, e.body) from e
        return TunnelResponse.from_dict(data)

    def delete_tunnel(self, tunnel_id: str):
        """터널 삭제"""
        try:
            self._do_request("DELETE", f"/api/tunnels/{tunnel_id}", expect_body=False)
        except APIError as e:
            raise APIError(f"delete tunnel request failed: {e}", e.status_code, e.body) from e

    def get_tunnel_status(self, tunnel_id: str) -> TunnelStatus:
        """터널 상태 조회"""
        try:
            data = self._do_request("GET", f"/api/tunnels/{tunnel_id}/status")
        except APIError as e:
            raise APIError(f"get tunnel status failed: {e}", e.status_code, e.body) from e
        return TunnelStatus.from_dict(data)

    def _do_request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                    expect_body: bool = True) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = self.base_url + path

        self.logger.debug("Sending provisioning request", method=method, path=path)
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise APIError(f"request failed: {e}") from e

        if response.status_code >= 400:
            raise APIError(
                f"request failed with status {response.status_code}: {response.text}",
                response.status_code,
                response.text,
            )

        if not expect_body:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"failed to decode response: {e}", response.status_code, response.text) from e

        if not isinstance(data, dict):
            raise APIError(
                f"failed to decode response: expected object, got {type(data).__name__}",
                response.status_code,
                response.text,
            )
        return data
