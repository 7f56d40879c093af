import json
import os
import stat
from pathlib import Path

from annoku.port_file import (
    delete_port_file,
    get_port_file_path,
    pid_running,
    read_port_file,
    write_port_file,
)


def test_write_then_read(tmp_path: Path) -> None:
    path = tmp_path / "server.port"
    written = write_port_file(4321, path)
    data = read_port_file(path)
    assert data == written
    assert data is not None
    assert data.port == 4321
    assert data.pid == os.getpid()
    assert data.started_at.endswith("Z")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert json.loads(path.read_text()) == {
        "port": 4321,
        "pid": os.getpid(),
        "startedAt": data.started_at,
    }


def test_env_override_is_the_default_location(tmp_path: Path) -> None:
    assert get_port_file_path() == tmp_path / "annoku.port"
    write_port_file(1111)
    data = read_port_file()
    assert data is not None and data.port == 1111


def test_read_missing_or_garbage_returns_none(tmp_path: Path) -> None:
    path = tmp_path / "server.port"
    assert read_port_file(path) is None
    path.write_text("not json")
    assert read_port_file(path) is None
    path.write_text("[1, 2]")
    assert read_port_file(path) is None
    path.write_text('{"port": "9223", "pid": 1}')
    assert read_port_file(path) is None


def test_delete_is_tolerant_of_missing_file(tmp_path: Path) -> None:
    path = tmp_path / "server.port"
    delete_port_file(path)
    write_port_file(1, path)
    delete_port_file(path)
    assert not path.exists()


def test_pid_running_for_current_process() -> None:
    assert pid_running(os.getpid()) is True
