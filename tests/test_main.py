import json

import pytest

import main
import storage.kv_store
from conftest import FakeStore, FakeTransport
from core.settings import SyncSettings
from services.connectivity import StaticReachability
from services.sync_queue import SyncQueue


@pytest.fixture()
def cli(monkeypatch, tmp_path):
    store = FakeStore()
    transport = FakeTransport()
    oracle = StaticReachability(False)
    settings = SyncSettings(server_base_url="https://api.test")

    def build_queue(*, offline=False, store_kind="sqlite"):
        return SyncQueue(store, oracle, transport, settings=settings)

    monkeypatch.setattr(main, "build_queue", build_queue)

    def run(*argv):
        return main.main(["--log", str(tmp_path / "sync.log"), *argv])

    run.store = store
    run.transport = transport
    run.oracle = oracle
    return run


def test_enqueue_then_status(cli, capsys):
    assert cli("enqueue", "/api/bookings", "post", "--data", '{"serviceId": "s1"}') == 0
    op_id = capsys.readouterr().out.strip()
    assert op_id

    assert cli("pending") == 0
    out = capsys.readouterr().out
    assert op_id in out and "/api/bookings" in out

    assert cli("status") == 0
    out = capsys.readouterr().out
    assert "Pending:    1" in out
    assert "Last sync:  never" in out


def test_enqueue_rejects_bad_payload(cli, capsys):
    assert cli("enqueue", "/api/bookings", "POST", "--data", "{oops") == 2
    assert "Invalid request" in capsys.readouterr().err


def test_drain_prints_counts(cli, capsys):
    cli("enqueue", "/api/bookings", "POST", "--data", "{}")
    capsys.readouterr()
    cli.oracle.online = True

    assert cli("drain") == 0
    assert json.loads(capsys.readouterr().out) == {"success": 1, "failed": 0, "remaining": 0}

    assert cli("cleanup") == 0
    assert "Removed 1 completed operations." in capsys.readouterr().out


def test_storage_failure_exits_with_error(cli, capsys):
    cli.store.fail_reads = True

    assert cli("status") == 1
    assert "Storage failure" in capsys.readouterr().err


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args([])


def test_json_store_backend_persists_queue(monkeypatch, tmp_path, capsys):
    kv_path = tmp_path / "kv.json"
    monkeypatch.setattr(storage.kv_store, "KV_FILE_PATH", kv_path)
    monkeypatch.setattr(main, "resolve_sync_settings", lambda: SyncSettings(server_base_url="https://api.test"))

    argv = ["--log", str(tmp_path / "sync.log"), "--offline", "--store", "json"]
    assert main.main([*argv, "enqueue", "/api/bookings", "DELETE"]) == 0
    op_id = capsys.readouterr().out.strip()

    document = json.loads(kv_path.read_text(encoding="utf-8"))
    [stored] = json.loads(document["@vibewell/sync_queue"])
    assert stored["id"] == op_id
    assert stored["method"] == "DELETE"

    assert main.main([*argv, "pending"]) == 0
    assert op_id in capsys.readouterr().out
