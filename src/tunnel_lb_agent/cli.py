"""
CLI 메인 인터페이스
Click 및 Rich 기반 컨트롤러 실행/설정 도구
"""

import signal
import sys
import threading
import click
from typing import Dict, List
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from . import __version__
from .api_client import APIClient, APIError, STATUS_ACTIVE
from .config import Config, ConfigError, SUPPORTED_KINDS
from .k8s import ClusterClient, load_kube_config
from .logger import init_logger, get_logger
from .reconciler import Reconciler
from .resources import AnnotationKeys
from .tunnel_manager import TunnelManager
from .watcher import ResourceWatcher, WatcherError

console = Console()


class ControllerOrchestrator:
    """컨트롤러 오케스트레이터

    종류별 watcher를 스레드로 실행하고 종료 신호를 받으면 정리한다.
    """

    def __init__(self, config: Config, cluster, api, tunnels: TunnelManager, cleanup: bool = False):
        self.config = config
        self.logger = get_logger()
        self.tunnels = tunnels
        self.cleanup = cleanup
        self.stop_event = threading.Event()
        self.errors: Dict[str, Exception] = {}

        keys = AnnotationKeys(config.watch.annotation_prefix)
        reconciler = Reconciler(cluster, api, tunnels, keys)
        self.watchers: List[ResourceWatcher] = [
            ResourceWatcher(
                kind,
                cluster,
                reconciler,
                annotation_keys=keys,
                namespace=config.watch.namespace,
                workers=config.watch.workers,
                resync_timeout=config.watch.resync_timeout,
            )
            for kind in config.watch.kinds
        ]

    def _run_watcher(self, watcher: ResourceWatcher):
        try:
            watcher.run(self.stop_event)
        except WatcherError as e:
            self.errors[watcher.kind] = e
            self.logger.error("Watcher failed", kind=watcher.kind, error=e)
            self.stop_event.set()
        except Exception as e:
            self.errors[watcher.kind] = e
            self.logger.exception("Watcher crashed", kind=watcher.kind)
            self.stop_event.set()

    def request_stop(self, signum=None, frame=None):
        """종료 요청 (시그널 핸들러)"""
        if signum is not None:
            self.logger.info("Received shutdown signal", signal=signal.Signals(signum).name)
        self.stop_event.set()

    def run(self) -> bool:
        """메인 실행 로직"""
        self.logger.info("=== Starting tunnel LB controller ===", kinds=",".join(self.config.watch.kinds))

        threads = []
        for watcher in self.watchers:
            thread = threading.Thread(
                target=self._run_watcher,
                args=(watcher,),
                name=f"{watcher.kind}-watcher",
            )
            thread.start()
            threads.append(thread)

        # 시그널 대기 (KeyboardInterrupt 처리를 위해 짧은 주기로 깨어남)
        try:
            while not self.stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            self.request_stop()

        for thread in threads:
            thread.join()

        if self.cleanup:
            left = self.tunnels.shutdown()
            if left:
                console.print(f"[yellow]⚠ 정리되지 않은 터널: {', '.join(left)}[/yellow]")

        self.logger.info("=== Controller stopped ===")
        self._print_log_files()
        return not self.errors

    def _print_log_files(self):
        log_files = self.logger.get_log_files()
        if not log_files["main_log"]:
            return
        console.print(f"\n[bold]로그 파일:[/bold]")
        console.print(f"  Main: {log_files['main_log']}", soft_wrap=True)
        console.print(f"  Error: {log_files['error_log']}", soft_wrap=True)


@click.group()
@click.version_option(version=__version__)
def cli():
    """Tunnel LB Agent

    어노테이션이 지정된 Ingress/LoadBalancer Service에 터널을 프로비저닝하고
    로컬 WireGuard 터널을 관리합니다.
    """
    pass


def _load_config(config_path) -> Config:
    try:
        cfg = Config(config_path)
        cfg.validate()
    except ConfigError as e:
        console.print(f"[red]✗ 설정 오류: {e}[/red]")
        sys.exit(1)
    return cfg


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
@click.option('--kind', '-k', 'kinds', multiple=True, type=click.Choice(SUPPORTED_KINDS),
              help='감시할 리소스 종류 (여러 번 지정 가능)')
@click.option('--workers', '-w', type=int, default=None, help='종류별 워커 수')
@click.option('--cleanup/--no-cleanup', default=False, help='종료 시 로컬 터널 정리 여부 (기본: 유지)')
def run(config, debug, kinds, workers, cleanup):
    """컨트롤러 실행"""
    try:
        cfg = Config(config)
        if kinds:
            cfg.watch.kinds = list(kinds)
        if workers is not None:
            cfg.watch.workers = workers
        cfg.validate()
    except ConfigError as e:
        console.print(f"[red]✗ 설정 오류: {e}[/red]")
        sys.exit(1)

    # 로거 초기화
    init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug)
    logger = get_logger()

    console.print(Panel.fit(
        "[bold cyan]Tunnel LB Agent[/bold cyan]\n"
        f"서버: {cfg.server.url}\n"
        f"감시 대상: {', '.join(cfg.watch.kinds)}",
        border_style="cyan"
    ))

    try:
        load_kube_config()
    except Exception as e:
        logger.error("Failed to load Kubernetes configuration", error=e)
        console.print(f"[red]✗ Kubernetes 설정 로드 실패: {e}[/red]")
        sys.exit(1)

    cluster = ClusterClient()
    api = APIClient(cfg.server.url, cfg.server.api_key, timeout=cfg.server.timeout)
    tunnels = TunnelManager(cfg.tunnel.wg_quick_path, cfg.tunnel.config_dir)

    orchestrator = ControllerOrchestrator(cfg, cluster, api, tunnels, cleanup=cleanup)
    signal.signal(signal.SIGINT, orchestrator.request_stop)
    signal.signal(signal.SIGTERM, orchestrator.request_stop)

    success = orchestrator.run()
    sys.exit(0 if success else 1)


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config(use_env=False)
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print(f"[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  tunnel-lb-agent run --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    cfg = _load_config(config)
    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("서버 URL", cfg.server.url)
    table.add_row("API 키", "설정됨" if cfg.server.api_key else "[red]미설정[/red]")
    table.add_row("감시 대상", ", ".join(cfg.watch.kinds))
    table.add_row("네임스페이스", cfg.watch.namespace or "전체")
    table.add_row("어노테이션 접두사", cfg.watch.annotation_prefix)
    table.add_row("워커 수", str(cfg.watch.workers))
    table.add_row("wg-quick", cfg.tunnel.wg_quick_path)

    console.print(table)


@cli.command()
@click.argument('tunnel_id')
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def status(tunnel_id, config):
    """프로비저닝 서버에서 터널 상태 조회"""
    cfg = _load_config(config)
    api = APIClient(cfg.server.url, cfg.server.api_key, timeout=cfg.server.timeout)

    try:
        result = api.get_tunnel_status(tunnel_id)
    except APIError as e:
        console.print(f"[red]✗ 상태 조회 실패: {e}[/red]")
        sys.exit(1)

    status_color = "green" if result.status == STATUS_ACTIVE else "yellow"
    table = Table(title="터널 상태")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")
    table.add_row("터널 ID", result.tunnel_id or tunnel_id)
    table.add_row("상태", f"[{status_color}]{result.status}[/{status_color}]")
    if result.error:
        table.add_row("오류", f"[red]{result.error}[/red]")
    console.print(table)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
