"""
WireGuard 터널 프로세스 래퍼 테스트
"""

import os
import stat
import subprocess
from unittest import mock
import pytest
from tunnel_lb_agent.wireguard import Tunnel, TunnelProcessError


@pytest.fixture
def popen():
    with mock.patch("tunnel_lb_agent.wireguard.subprocess.Popen") as patched:
        patched.return_value.pid = 4242
        yield patched


@pytest.fixture
def run():
    with mock.patch("tunnel_lb_agent.wireguard.subprocess.run") as patched:
        yield patched


def test_config_path_is_per_tunnel(tmp_path):
    """터널 ID별 고정 경로"""
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))
    assert tunnel.config_path == os.path.join(str(tmp_path), "wg-abc.conf")


def test_start_writes_owner_only_file_and_launches(tmp_path, popen):
    """start: 0600 파일 기록 후 wg-quick up 비동기 실행"""
    tunnel = Tunnel("abc", "[Interface]\nPrivateKey = secret\n", config_dir=str(tmp_path))

    tunnel.start()

    with open(tunnel.config_path) as f:
        assert f.read() == "[Interface]\nPrivateKey = secret\n"
    mode = stat.S_IMODE(os.stat(tunnel.config_path).st_mode)
    assert mode == 0o600
    popen.assert_called_once_with(["wg-quick", "up", tunnel.config_path])
    popen.return_value.wait.assert_not_called()
    assert tunnel.running


def test_start_tightens_existing_file_permissions(tmp_path, popen):
    """기존 파일 권한도 0600으로 변경"""
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))
    with open(tunnel.config_path, "w") as f:
        f.write("old")
    os.chmod(tunnel.config_path, 0o644)

    tunnel.start()

    assert stat.S_IMODE(os.stat(tunnel.config_path).st_mode) == 0o600


def test_start_spawn_failure(tmp_path, popen):
    """wg-quick 실행 실패"""
    popen.side_effect = FileNotFoundError("wg-quick")
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))

    with pytest.raises(TunnelProcessError) as exc_info:
        tunnel.start()

    assert exc_info.value.step == "start wg-quick"
    assert not tunnel.running


def test_stop_kills_then_brings_down_then_removes(tmp_path, popen, run):
    """stop: kill -> wg-quick down -> 파일 삭제"""
    calls = []
    popen.return_value.kill.side_effect = lambda: calls.append("kill")
    run.side_effect = lambda *a, **kw: calls.append("down")
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))
    tunnel.start()

    tunnel.stop()

    assert calls == ["kill", "down"]
    run.assert_called_once_with(["wg-quick", "down", tunnel.config_path], check=True)
    assert not os.path.exists(tunnel.config_path)
    assert not tunnel.running


def test_stop_without_process_still_brings_down(tmp_path, run):
    """프로세스 핸들이 없어도 wg-quick down 실행"""
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))
    with open(tunnel.config_path, "w") as f:
        f.write("cfg")

    tunnel.stop()

    run.assert_called_once()
    assert not os.path.exists(tunnel.config_path)


def test_stop_down_failure_keeps_file(tmp_path, popen, run):
    """wg-quick down 실패 시 설정 파일 유지"""
    run.side_effect = subprocess.CalledProcessError(1, ["wg-quick", "down"])
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))
    tunnel.start()

    with pytest.raises(TunnelProcessError) as exc_info:
        tunnel.stop()

    assert exc_info.value.step == "stop wg-quick"
    assert os.path.exists(tunnel.config_path)


def test_stop_remove_failure_reported(tmp_path, run):
    """파일 삭제 실패 보고"""
    tunnel = Tunnel("abc", "cfg", config_dir=str(tmp_path))

    # 파일이 없으므로 삭제 단계에서 실패
    with pytest.raises(TunnelProcessError) as exc_info:
        tunnel.stop()

    assert exc_info.value.step == "remove config file"


def test_update_restarts_with_new_config(tmp_path, popen, run):
    """update: stop 후 새 설정으로 start"""
    tunnel = Tunnel("abc", "old", config_dir=str(tmp_path))
    tunnel.start()

    tunnel.update("new")

    assert tunnel.config == "new"
    with open(tunnel.config_path) as f:
        assert f.read() == "new"
    assert popen.call_count == 2
    run.assert_called_once()


def test_custom_wg_quick_path(tmp_path, popen):
    """wg-quick 경로 지정"""
    tunnel = Tunnel("abc", "cfg", wg_quick_path="/usr/local/bin/wg-quick", config_dir=str(tmp_path))
    tunnel.start()
    popen.assert_called_once_with(["/usr/local/bin/wg-quick", "up", tunnel.config_path])
