import threading

import httpx
import pytest
from fastapi.testclient import TestClient

from cardbutler.api.app import create_app
from cardbutler.models.account import AccountRecord
from cardbutler.services.config_manager import AppSettings
from cardbutler.services.sync_client import MemoryCardStore, SyncClient


@pytest.fixture
def server(tmp_path):
    app = create_app(AppSettings(db_path=str(tmp_path / "server.db")))
    with TestClient(app) as client:
        yield client


def _local(sync_id, updated_at, **fields):
    return AccountRecord(
        sync_id=sync_id,
        display_name=fields.pop('display_name', '本地卡'),
        bank_name='招商银行',
        created_at=updated_at,
        updated_at=updated_at,
        **fields,
    )


def test_first_sync_assigns_sync_id_and_uploads(server):
    phone = MemoryCardStore([_local("", 100)])
    client = SyncClient(phone, server, device_id="device_phone")

    outcome = client.sync()

    assert outcome.success
    assert outcome.uploaded == 1
    local = phone.get_all()[0]
    assert local.sync_id
    assert client.last_sync_at > 0

    cards = server.get("/api/v1/cards").json()['data']
    assert [c['syncId'] for c in cards] == [local.sync_id]


def test_two_devices_converge(server):
    phone = SyncClient(MemoryCardStore([_local("c1", 100, display_name="手机改名")]), server, "phone")
    tablet = SyncClient(MemoryCardStore(), server, "tablet")

    assert phone.sync().success
    outcome = tablet.sync()

    assert outcome.inserted == 1
    assert tablet.store.get("c1").display_name == "手机改名"


def test_newer_server_version_overwrites_local(server):
    server.post("/api/v1/sync", json={'cards': [_local("c1", 200, display_name="服务器版本").to_dict()]})
    store = MemoryCardStore([_local("c1", 100, display_name="本地旧版本")])

    outcome = SyncClient(store, server, "phone").sync()

    assert outcome.updated == 1
    assert store.get("c1").display_name == "服务器版本"
    assert store.get("c1").updated_at == 200


def test_newer_local_version_wins(server):
    server.post("/api/v1/sync", json={'cards': [_local("c1", 100, display_name="服务器旧版本").to_dict()]})
    store = MemoryCardStore([_local("c1", 300, display_name="本地新版本")])

    SyncClient(store, server, "phone").sync()

    assert store.get("c1").display_name == "本地新版本"
    cards = server.get("/api/v1/cards").json()['data']
    assert cards[0]['name'] == "本地新版本"


def test_force_full_sync_resets_watermark(server):
    server.post("/api/v1/sync", json={'cards': [_local("c1", 100).to_dict()]})
    store = MemoryCardStore()
    client = SyncClient(store, server, "phone", last_sync_at=10 ** 10)

    assert client.sync().inserted == 0

    outcome = client.force_full_sync()

    assert outcome.inserted == 1
    assert store.get("c1") is not None


def test_transport_error_keeps_watermark():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    http = httpx.Client(base_url="http://sync.local", transport=httpx.MockTransport(handler))
    client = SyncClient(MemoryCardStore([_local("c1", 100)]), http, "phone", last_sync_at=42)

    outcome = client.sync()

    assert not outcome.success
    assert "refused" in outcome.error
    assert client.last_sync_at == 42


def test_server_error_status_is_reported():
    http = httpx.Client(
        base_url="http://sync.local",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, json={'error': 'boom'})),
    )

    outcome = SyncClient(MemoryCardStore(), http, "phone").sync()

    assert outcome.error == "服务器错误: 500"


def test_concurrent_sync_is_rejected():
    entered = threading.Event()
    release = threading.Event()

    def handler(request):
        entered.set()
        release.wait(5)
        return httpx.Response(200, json={'success': True, 'data': {'cards': [], 'serverTime': 7}})

    http = httpx.Client(base_url="http://sync.local", transport=httpx.MockTransport(handler))
    client = SyncClient(MemoryCardStore(), http, "phone")

    results = []
    worker = threading.Thread(target=lambda: results.append(client.sync()))
    worker.start()
    entered.wait(5)
    busy = client.is_syncing

    second = client.sync()
    release.set()
    worker.join(5)

    assert busy is True
    assert client.is_syncing is False
    assert second.success is False
    assert second.error == "同步进行中"
    assert results[0].success
    assert client.last_sync_at == 7


def test_health_check(server):
    assert SyncClient(MemoryCardStore(), server).test_connection() is True
