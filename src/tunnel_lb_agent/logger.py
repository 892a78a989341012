"""
로깅 시스템
파일 및 콘솔 로깅, 구조화된 컨텍스트 필드 지원
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional
from rich.logging import RichHandler
from rich.console import Console

console = Console(stderr=True)

LOGGER_NAME = "tunnel_lb_agent"


def format_fields(fields: Dict[str, Any]) -> str:
    """필드를 key=value 문자열로 변환"""
    return " ".join(f"{key}={fields[key]}" for key in sorted(fields))


class AgentLogger:
    """에이전트 로거

    log_dir이 None이면 콘솔 핸들러만 사용한다.
    """

    def __init__(self, log_dir: Optional[str] = "/var/log/tunnel-lb-agent", log_level: str = "INFO",
                 debug: bool = False, fields: Optional[Dict[str, Any]] = None,
                 logger: Optional[logging.Logger] = None):
        self.log_dir = log_dir
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)
        self.debug_mode = debug
        self.fields = dict(fields or {})
        self.log_file = None
        self.error_file = None

        # with_fields로 만든 자식 로거는 핸들러를 공유
        if logger is not None:
            self.logger = logger
            return

        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(self.log_level)

        # 기존 핸들러 제거
        self.logger.handlers.clear()

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.log_file = os.path.join(log_dir, f"agent_{timestamp}.log")
            self.error_file = os.path.join(log_dir, f"error_{timestamp}.log")

            # 파일 핸들러
            file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
            file_handler.setLevel(self.log_level)
            file_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

            # 에러 파일 핸들러
            error_handler = logging.FileHandler(self.error_file, encoding='utf-8')
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            self.logger.addHandler(error_handler)

        # 콘솔 핸들러 (Rich)
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=debug
        )
        rich_handler.setLevel(self.log_level)
        self.logger.addHandler(rich_handler)

    def with_fields(self, **fields) -> "AgentLogger":
        """컨텍스트 필드가 고정된 자식 로거 반환"""
        merged = dict(self.fields)
        merged.update(fields)
        child = AgentLogger(
            log_dir=self.log_dir,
            debug=self.debug_mode,
            fields=merged,
            logger=self.logger,
        )
        child.log_level = self.log_level
        child.log_file = self.log_file
        child.error_file = self.error_file
        return child

    def _render(self, message: str, fields: Dict[str, Any]) -> str:
        if not self.fields and not fields:
            return message
        merged = dict(self.fields)
        merged.update(fields)
        return f"{message} {format_fields(merged)}"

    def debug(self, message: str, **fields):
        """디버그 로그"""
        self.logger.debug(self._render(message, fields))

    def info(self, message: str, **fields):
        """정보 로그"""
        self.logger.info(self._render(message, fields))

    def warning(self, message: str, **fields):
        """경고 로그"""
        self.logger.warning(self._render(message, fields))

    def error(self, message: str, **fields):
        """에러 로그"""
        self.logger.error(self._render(message, fields))

    def exception(self, message: str, **fields):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(self._render(message, fields))

    def get_log_files(self) -> dict:
        """로그 파일 경로 반환"""
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }


# 글로벌 로거 인스턴스
_logger: Optional[AgentLogger] = None


def get_logger() -> AgentLogger:
    """로거 인스턴스 가져오기 (초기화 전에는 콘솔 전용)"""
    global _logger
    if _logger is None:
        _logger = AgentLogger(log_dir=None)
    return _logger


def init_logger(log_dir: Optional[str], log_level: str, debug: bool) -> AgentLogger:
    """로거 초기화"""
    global _logger
    _logger = AgentLogger(log_dir, log_level, debug)
    return _logger
