"""
터널 수명주기 관리 모듈
터널 ID -> Tunnel 레지스트리를 단일 락으로 보호
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional
from .logger import get_logger
from .wireguard import Tunnel, TunnelProcessError


class TunnelError(Exception):
    """로컬 터널 작업 실패"""


class TunnelExistsError(TunnelError):
    """이미 등록된 터널 ID"""


class TunnelNotFoundError(TunnelError):
    """등록되지 않은 터널 ID"""


@dataclass
class TunnelConfig:
    """로컬 터널 설정 요청"""
    tunnel_id: str
    wg_config: str = ""


@dataclass(frozen=True)
class TunnelInfo:
    """조회용 터널 스냅샷 (레지스트리 밖에서 프로세스를 건드릴 수 없음)"""
    tunnel_id: str
    config: str
    config_path: str
    running: bool

    @classmethod
    def from_tunnel(cls, tunnel: Tunnel) -> "TunnelInfo":
        return cls(
            tunnel_id=tunnel.id,
            config=tunnel.config,
            config_path=tunnel.config_path,
            running=tunnel.running,
        )


class TunnelManager:
    """로컬 터널 레지스트리

    외부 프로세스 start/stop 동안에도 락을 유지하므로
    서로 다른 터널의 작업도 직렬화된다.
    """

    def __init__(self, wg_quick_path: str = "wg-quick", config_dir: Optional[str] = None):
        self.wg_quick_path = wg_quick_path
        self.config_dir = config_dir or None
        self.logger = get_logger()
        self._lock = threading.Lock()
        self._tunnels: Dict[str, Tunnel] = {}

    def _new_tunnel(self, config: TunnelConfig) -> Tunnel:
        return Tunnel(
            config.tunnel_id,
            config.wg_config,
            wg_quick_path=self.wg_quick_path,
            config_dir=self.config_dir,
        )

    def create_tunnel(self, config: TunnelConfig):
        """터널 생성 및 시작 (시작 성공 후에만 등록)"""
        with self._lock:
            if config.tunnel_id in self._tunnels:
                raise TunnelExistsError(f"tunnel {config.tunnel_id} already exists")

            tunnel = self._new_tunnel(config)
            try:
                tunnel.start()
            except TunnelProcessError as e:
                raise TunnelError(f"failed to start tunnel: {e}") from e

            self._tunnels[config.tunnel_id] = tunnel
            self.logger.info("Local tunnel created", tunnel_id=config.tunnel_id)

    def update_tunnel(self, config: TunnelConfig):
        """기존 터널을 새 설정으로 재시작"""
        with self._lock:
            tunnel = self._tunnels.get(config.tunnel_id)
            if tunnel is None:
                raise TunnelNotFoundError(f"tunnel {config.tunnel_id} not found")

            try:
                tunnel.update(config.wg_config)
            except TunnelProcessError as e:
                raise TunnelError(f"failed to update tunnel: {e}") from e

            self.logger.info("Local tunnel updated", tunnel_id=config.tunnel_id)

    def delete_tunnel(self, tunnel_id: str):
        """터널 중지 후 제거 (중지 실패 시 엔트리 유지)"""
        with self._lock:
            tunnel = self._tunnels.get(tunnel_id)
            if tunnel is None:
                raise TunnelNotFoundError(f"tunnel {tunnel_id} not found")

            try:
                tunnel.stop()
            except TunnelProcessError as e:
                raise TunnelError(f"failed to stop tunnel: {e}") from e

            del self._tunnels[tunnel_id]
            self.logger.info("Local tunnel deleted", tunnel_id=tunnel_id)

    def get_tunnel(self, tunnel_id: str) -> TunnelInfo:
        """터널 스냅샷 조회"""
        with self._lock:
            tunnel = self._tunnels.get(tunnel_id)
            if tunnel is None:
                raise TunnelNotFoundError(f"tunnel {tunnel_id} not found")
            return TunnelInfo.from_tunnel(tunnel)

    def list_tunnels(self) -> List[TunnelInfo]:
        """등록된 터널 스냅샷 목록"""
        with self._lock:
            return [TunnelInfo.from_tunnel(tunnel) for tunnel in self._tunnels.values()]

    def shutdown(self) -> List[str]:
        """모든 터널 중지 (에이전트 종료 시)

        Returns:
            List[str]: 중지에 실패해 남아 있는 터널 ID
        """
        failed = []
        with self._lock:
            for tunnel_id, tunnel in list(self._tunnels.items()):
                try:
                    tunnel.stop()
                except TunnelProcessError as e:
                    self.logger.error("Failed to stop tunnel on shutdown", tunnel_id=tunnel_id, error=e)
                    failed.append(tunnel_id)
                    continue
                del self._tunnels[tunnel_id]
        if failed:
            self.logger.warning("Tunnels left running after shutdown", tunnel_ids=",".join(failed))
        return failed
