"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리, 환경변수 오버라이드 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from .resources import DEFAULT_ANNOTATION_PREFIX, KIND_INGRESS, KIND_SERVICE

SUPPORTED_KINDS = (KIND_INGRESS, KIND_SERVICE)


class ConfigError(Exception):
    """설정 오류"""


@dataclass
class ServerConfig:
    """프로비저닝 서버 설정"""
    url: str = "http://localhost:8080"
    api_key: str = ""
    timeout: int = 30


@dataclass
class WatchConfig:
    """리소스 watch 설정"""
    kinds: list = field(default_factory=lambda: ["service"])
    namespace: str = ""  # 비어 있으면 전체 네임스페이스
    annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX
    workers: int = 1
    resync_timeout: int = 300


@dataclass
class TunnelConfigSection:
    """로컬 WireGuard 터널 설정"""
    wg_quick_path: str = "wg-quick"
    config_dir: str = ""  # 비어 있으면 시스템 임시 디렉토리


@dataclass
class AgentConfig:
    """에이전트 설정"""
    log_dir: str = "/var/log/tunnel-lb-agent"
    log_level: str = "INFO"


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/tunnel-lb-agent/config.yaml",
        "~/.tunnel-lb-agent/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    # 환경변수 -> (섹션, 키)
    ENV_OVERRIDES = {
        "SERVER_URL": ("server", "url"),
        "API_KEY": ("server", "api_key"),
        "LOG_LEVEL": ("agent", "log_level"),
    }

    def __init__(self, config_path: Optional[str] = None, use_env: bool = True):
        self.config_path = config_path
        self.server = ServerConfig()
        self.watch = WatchConfig()
        self.tunnel = TunnelConfigSection()
        self.agent = AgentConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

        if use_env:
            self.apply_env()

    def _sections(self) -> Dict[str, Any]:
        return {
            'server': self.server,
            'watch': self.watch,
            'tunnel': self.tunnel,
            'agent': self.agent,
        }

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            try:
                if path.endswith('.json'):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, json.JSONDecodeError) as e:
                raise ConfigError(f"failed to parse config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a mapping")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        for name, section in self._sections().items():
            for key, value in (data.get(name) or {}).items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def apply_env(self, environ: Optional[Dict[str, str]] = None):
        """환경변수로 설정 덮어쓰기"""
        environ = os.environ if environ is None else environ
        sections = self._sections()
        for env_key, (section_name, key) in self.ENV_OVERRIDES.items():
            if env_key in environ:
                setattr(sections[section_name], key, environ[env_key])

    def validate(self):
        """설정 유효성 검사"""
        if not self.server.api_key:
            raise ConfigError("API_KEY environment variable or server.api_key is required")

        if not self.server.url:
            raise ConfigError("server.url is required")

        unknown = [kind for kind in self.watch.kinds if kind not in SUPPORTED_KINDS]
        if not self.watch.kinds or unknown:
            raise ConfigError(
                f"watch.kinds must be a non-empty subset of {list(SUPPORTED_KINDS)}, got {self.watch.kinds}"
            )

        if int(self.watch.workers) < 1:
            raise ConfigError(f"watch.workers must be >= 1, got {self.watch.workers}")

        if not self.watch.annotation_prefix:
            raise ConfigError("watch.annotation_prefix is required")

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(section) for name, section in self._sections().items()}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# Tunnel LB Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# 프로비저닝 서버 설정
server:
  url: "http://localhost:8080"
  api_key: ""  # 환경변수 API_KEY로도 지정 가능
  timeout: 30  # 요청 타임아웃 (초)

# 리소스 watch 설정
watch:
  kinds:
    - "service"  # service 및/또는 ingress
  namespace: ""  # 비워두면 전체 네임스페이스
  annotation_prefix: "easy-tunnel-lb.quinnovator.com"
  workers: 1
  resync_timeout: 300  # watch 스트림 재연결 주기 (초)

# 로컬 WireGuard 터널 설정
tunnel:
  wg_quick_path: "wg-quick"
  config_dir: ""  # 비워두면 시스템 임시 디렉토리

# 에이전트 설정
agent:
  log_dir: "/var/log/tunnel-lb-agent"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
