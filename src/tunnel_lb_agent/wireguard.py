"""
WireGuard 터널 프로세스 래퍼
설정 파일(키 포함)을 0600 권한으로 기록하고 wg-quick up/down으로 인터페이스를 제어
"""

import os
import subprocess
import tempfile
from typing import Optional
from .logger import get_logger


class TunnelProcessError(Exception):
    """터널 파일/프로세스 단계 실패"""

    def __init__(self, tunnel_id: str, step: str, cause: Exception):
        super().__init__(f"tunnel {tunnel_id}: failed to {step}: {cause}")
        self.tunnel_id = tunnel_id
        self.step = step


class Tunnel:
    """WireGuard 터널 하나

    실패 시 남는 흔적:
    - start 중 파일 기록 실패: 프로세스 없음, 파일은 부분적으로 남을 수 있음
    - start 중 wg-quick up 실행 실패: 설정 파일이 남음
    - stop 중 kill 실패: 프로세스 핸들과 파일이 모두 남음
    - stop 중 wg-quick down 실패: 인터페이스와 설정 파일이 남음
    - stop 중 파일 삭제 실패: 키가 담긴 설정 파일이 디스크에 남음
    """

    def __init__(self, tunnel_id: str, config: str, wg_quick_path: str = "wg-quick",
                 config_dir: Optional[str] = None):
        self.id = tunnel_id
        self.config = config
        self.wg_quick_path = wg_quick_path
        self.config_dir = config_dir or tempfile.gettempdir()
        self.process: Optional[subprocess.Popen] = None
        self.logger = get_logger().with_fields(tunnel_id=tunnel_id)

    @property
    def config_path(self) -> str:
        """설정 파일 경로 (터널 ID별 고정)"""
        return os.path.join(self.config_dir, f"wg-{self.id}.conf")

    @property
    def running(self) -> bool:
        return self.process is not None

    def start(self):
        """설정 파일을 쓰고 wg-quick up을 비동기로 실행"""
        config_path = self.config_path
        try:
            self._write_config(config_path)
        except OSError as e:
            raise TunnelProcessError(self.id, "write config", e) from e

        self.logger.info("Bringing tunnel up", config_path=config_path)
        try:
            # 종료를 기다리지 않고 핸들만 보관
            self.process = subprocess.Popen([self.wg_quick_path, "up", config_path])
        except (OSError, subprocess.SubprocessError) as e:
            raise TunnelProcessError(self.id, "start wg-quick", e) from e

        self.logger.debug("wg-quick up launched", pid=self.process.pid)

    def stop(self):
        """프로세스 종료, wg-quick down, 설정 파일 삭제 순으로 정리"""
        config_path = self.config_path

        if self.process is not None:
            try:
                self.process.kill()
                self.process.wait()
            except ProcessLookupError:
                # 이미 종료된 프로세스
                pass
            except OSError as e:
                raise TunnelProcessError(self.id, "kill wg-quick process", e) from e
            self.process = None

        self.logger.info("Bringing tunnel down", config_path=config_path)
        try:
            subprocess.run([self.wg_quick_path, "down", config_path], check=True)
        except (OSError, subprocess.SubprocessError) as e:
            raise TunnelProcessError(self.id, "stop wg-quick", e) from e

        try:
            os.remove(config_path)
        except OSError as e:
            self.logger.error("Config file with key material left on disk", config_path=config_path)
            raise TunnelProcessError(self.id, "remove config file", e) from e

    def update(self, config: str):
        """stop 후 새 설정으로 start (롤백 없음)"""
        self.stop()
        self.config = config
        self.start()

    def _write_config(self, config_path: str):
        fd = os.open(config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self.config)
        # 기존 파일의 권한도 강제로 맞춤
        os.chmod(config_path, 0o600)

    def __repr__(self) -> str:
        return f"Tunnel(id={self.id!r}, running={self.running})"
