import json
import math
import stat
import time
from pathlib import Path

from annoku.models import AnnotationDraft, Point, Viewport
from annoku.persistence import PersistenceManager, load_snapshot
from annoku.store import AnnotationStore


def _store_with(count: int) -> AnnotationStore:
    store = AnnotationStore()
    for i in range(count):
        store.create(AnnotationDraft(text=f"t{i}", viewport=Viewport(800, 600)))
    return store


def test_disabled_manager_never_touches_disk(tmp_path: Path) -> None:
    path = tmp_path / "snap.json"
    path_missing = tmp_path / "other.json"
    store = _store_with(2)
    manager = PersistenceManager(path_missing, store.snapshot, enabled=False)
    manager.schedule()
    assert manager.flush() is False
    manager.close()
    assert manager.load() == []
    assert not path_missing.exists()
    assert not path.exists()


def test_flush_writes_full_snapshot_with_private_mode(tmp_path: Path) -> None:
    path = tmp_path / "snap.json"
    store = _store_with(3)
    manager = PersistenceManager(path, store.snapshot, enabled=True)
    assert manager.flush() is True
    data = json.loads(path.read_text())
    assert [item["text"] for item in data] == ["t0", "t1", "t2"]
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_load_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "snap.json"
    store = _store_with(2)
    PersistenceManager(path, store.snapshot, enabled=True).flush()
    loaded = load_snapshot(path)
    assert [record.to_dict() for record in loaded] == store.snapshot()


def test_missing_or_malformed_snapshot_starts_empty(tmp_path: Path) -> None:
    assert load_snapshot(tmp_path / "missing.json") == []
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    assert load_snapshot(bad) == []
    bad.write_text('{"id": "x"}')
    assert load_snapshot(bad) == []
    bad.write_text('[1, {"text": "no id"}, {"id": "ok", "text": "kept"}]')
    assert [record.id for record in load_snapshot(bad)] == ["ok"]


def test_rapid_schedules_flush_once(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "snap.json"
    store = AnnotationStore()
    manager = PersistenceManager(path, store.snapshot, enabled=True, debounce_ms=100)
    store.on_change = manager.schedule
    writes: list[int] = []
    original_write = manager._write

    def counting_write(records):
        writes.append(len(records))
        original_write(records)

    monkeypatch.setattr(manager, "_write", counting_write)
    for i in range(10):
        store.create(AnnotationDraft(text=f"rapid-{i}"))
    assert writes == []
    deadline = time.monotonic() + 3
    while not writes and time.monotonic() < deadline:
        time.sleep(0.02)
    time.sleep(0.2)
    assert writes == [10]
    assert len(json.loads(path.read_text())) == 10


def test_close_flushes_pending_write(tmp_path: Path) -> None:
    path = tmp_path / "snap.json"
    store = AnnotationStore()
    manager = PersistenceManager(path, store.snapshot, enabled=True, debounce_ms=10_000)
    store.on_change = manager.schedule
    store.create(AnnotationDraft(text="pending"))
    assert manager.pending
    manager.close()
    assert not manager.pending
    assert [item["text"] for item in json.loads(path.read_text())] == ["pending"]


def test_failed_write_keeps_memory_intact(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    store = _store_with(1)
    manager = PersistenceManager(blocker / "snap.json", store.snapshot, enabled=True)
    assert manager.flush() is False
    assert len(store) == 1


def _reject_constant(token: str) -> None:
    raise ValueError(f"non-standard JSON token {token}")


def test_snapshot_stays_strict_json_with_non_finite_numbers(tmp_path: Path) -> None:
    path = tmp_path / "snap.json"
    store = AnnotationStore()
    store.create(
        AnnotationDraft(
            text="nan anchor",
            viewport=Viewport(800, 600),
            anchor_point=Point(math.nan, math.inf),
        )
    )
    assert PersistenceManager(path, store.snapshot, enabled=True).flush() is True
    (item,) = json.loads(path.read_text(), parse_constant=_reject_constant)
    assert item["anchorPoint"] == {"x": None, "y": None}
