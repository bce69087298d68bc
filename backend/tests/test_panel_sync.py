import json

import httpx
import pytest
import respx
from sqlalchemy import func, select

from app.models.panel_allocation import PanelAllocation
from app.models.panel_config import PanelConfig
from app.models.panel_egg import PanelEgg
from app.models.server import ProvisionedServer
from app.models.user import User
from app.services.errors import ConflictError, ValidationError
from app.services.panel_sync import (
    connect_panel,
    current_config,
    disconnect_panel,
    mask_key,
    normalize_egg_variables,
    set_allocation_priority,
    sync_allocations,
    sync_eggs,
    sync_users,
)
from app.services.settings_store import get_panel_settings, set_panel_settings
from panel_payloads import PANEL_API, PANEL_URL

NEW_URL = "https://panel.other"
CHECK_OK = {"object": "list", "data": [], "meta": {"pagination": {"total": 0}}}


async def _count(db, model) -> int:
    return (await db.execute(select(func.count(model.id)))).scalar_one()


def test_mask_key():
    assert mask_key("ptla_abcdefgh1234") == "ptla*********1234"
    assert mask_key("short") == "*****"
    assert mask_key("") == ""


def test_normalize_egg_variables():
    egg = {
        "relationships": {
            "variables": {
                "data": [
                    {"attributes": {"env_variable": "SERVER_JARFILE", "default_value": "server.jar"}},
                    {"attributes": {"env_variable": "BUILD_NUMBER", "default_value": None}},
                    {"attributes": {"name": "no env var"}},
                    "garbage",
                ]
            }
        }
    }
    assert normalize_egg_variables(egg) == [
        {"name": "SERVER_JARFILE", "default": "server.jar"},
        {"name": "BUILD_NUMBER", "default": ""},
        {"name": "no env var", "default": ""},
    ]
    assert normalize_egg_variables({}) == []


@pytest.mark.asyncio
async def test_connect_stores_encrypted_key_and_clears_cache(db, resolver, cipher):
    assert (await resolver.get_config()).url == PANEL_URL

    with respx.mock(base_url=f"{NEW_URL}/api") as mock:
        check = mock.get("/application/servers").respond(200, json=CHECK_OK)
        row = await connect_panel(db, resolver, f"{NEW_URL}/", "ptla_new_key_123", cipher=cipher)

    assert check.called
    assert check.calls.last.request.headers["Authorization"] == "Bearer ptla_new_key_123"
    assert row.panel_url == NEW_URL
    assert row.api_key != "ptla_new_key_123"
    assert row.last_connected_at is not None

    creds = await resolver.get_config()
    assert creds.url == NEW_URL
    assert creds.api_key == "ptla_new_key_123"


@pytest.mark.asyncio
async def test_connect_to_another_panel_while_connected_conflicts(db, resolver, cipher):
    with respx.mock(base_url=f"{NEW_URL}/api") as mock:
        mock.get("/application/servers").respond(200, json=CHECK_OK)
        await connect_panel(db, resolver, NEW_URL, "ptla_new_key_123", cipher=cipher)

    # no route mocked: a check would fail the test
    with respx.mock(assert_all_called=False):
        with pytest.raises(ConflictError):
            await connect_panel(db, resolver, "https://third.example", "ptla_other", cipher=cipher)


@pytest.mark.asyncio
async def test_reconnect_same_panel_rotates_key(db, resolver, cipher):
    with respx.mock(base_url=f"{NEW_URL}/api") as mock:
        mock.get("/application/servers").respond(200, json=CHECK_OK)
        await connect_panel(db, resolver, NEW_URL, "ptla_first", cipher=cipher)
        await connect_panel(db, resolver, NEW_URL, "ptla_second", cipher=cipher)

    assert await _count(db, PanelConfig) == 1
    assert (await resolver.get_config()).api_key == "ptla_second"


@pytest.mark.asyncio
async def test_connect_failed_check_is_rejected(db, resolver, cipher):
    with respx.mock(base_url=f"{NEW_URL}/api") as mock:
        mock.get("/application/servers").respond(401)
        with pytest.raises(ValidationError, match="Invalid API key"):
            await connect_panel(db, resolver, NEW_URL, "ptla_bad", cipher=cipher)
    assert await current_config(db) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "panel.example.com", "ftp://panel.example.com"])
async def test_connect_rejects_malformed_url(db, resolver, cipher, url):
    with pytest.raises(ValidationError):
        await connect_panel(db, resolver, url, "ptla_key", cipher=cipher)


@pytest.mark.asyncio
async def test_disconnect_clears_panel_state_but_not_pools(db, resolver, cipher, make_user, make_server):
    user = await make_user(purchased_ram_mb=4096, coins=7)
    user_id = user.id
    await make_server(user.id, remote_id="12")
    await make_server(user.id, remote_id=None, name="local")
    db.add(PanelConfig(panel_url=NEW_URL, api_key=cipher.encrypt("ptla_key")))
    db.add(PanelEgg(egg_id=3, nest_id=1, name="Paper", environment_variables=[]))
    db.add(PanelAllocation(allocation_id=100, ip="10.0.0.1", port=25565, node_id=1))
    await set_panel_settings(db, {"default_location_id": 2})
    await db.commit()
    assert (await resolver.get_config()).url == NEW_URL

    removed = await disconnect_panel(db, resolver)

    assert removed == 1
    assert await _count(db, PanelConfig) == 0
    assert await _count(db, PanelEgg) == 0
    assert await _count(db, PanelAllocation) == 0
    remaining = (await db.execute(select(ProvisionedServer))).scalars().all()
    assert [s.name for s in remaining] == ["local"]
    assert (await get_panel_settings(db))["default_location_id"] is None

    fresh = (await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))).scalar_one()
    assert (fresh.coins, fresh.purchased_ram_mb) == (7, 4096)

    # cache was cleared, so the environment credentials are back
    assert (await resolver.get_config()).url == PANEL_URL


@pytest.mark.asyncio
async def test_sync_users_links_creates_and_reports_failures(db, panel_client, make_user):
    linked = await make_user(email="known@example.com", username="known")
    created = await make_user(email="new@example.com", username="Jane Doe")
    failing = await make_user(email="broken@example.com", username="broken")
    linked_id, created_id, failing_id = linked.id, created.id, failing.id
    await make_user(email="done@example.com", panel_user_id="9")

    def lookup(request):
        email = request.url.params["filter[email]"]
        data = []
        if email == "known@example.com":
            data = [{"object": "user", "attributes": {"id": 31, "email": "Known@Example.com"}}]
        return httpx.Response(200, json={"object": "list", "data": data})

    def create(request):
        body = json.loads(request.content)
        if body["email"] == "broken@example.com":
            return httpx.Response(422, json={"errors": [{"detail": "The username has already been taken."}]})
        return httpx.Response(201, json={"object": "user", "attributes": {"id": 32, "email": body["email"]}})

    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/users").mock(side_effect=lookup)
        create_route = mock.post("/application/users").mock(side_effect=create)
        report = await sync_users(db, panel_client)

    assert (report.total, report.synced, report.failed) == (3, 2, 1)
    statuses = {r["email"]: r["status"] for r in report.results}
    assert statuses == {
        "known@example.com": "linked",
        "new@example.com": "created",
        "broken@example.com": "failed",
    }

    sent = [json.loads(c.request.content) for c in create_route.calls]
    jane = next(b for b in sent if b["email"] == "new@example.com")
    assert (jane["first_name"], jane["last_name"]) == ("Jane", "Doe")
    assert jane["password"]

    ids = dict((await db.execute(select(User.id, User.panel_user_id))).all())
    assert ids[linked_id] == "31"
    assert ids[created_id] == "32"
    assert ids[failing_id] is None


@pytest.mark.asyncio
async def test_sync_eggs_upserts_selected(db, panel_client):
    db.add(PanelEgg(egg_id=10, nest_id=1, name="Old name", environment_variables=[], is_active=False))
    await db.commit()

    nests = {"data": [{"attributes": {"id": 1, "name": "Minecraft"}}]}
    eggs = {
        "data": [
            {
                "attributes": {
                    "id": 10,
                    "name": "Paper",
                    "docker_image": "ghcr.io/pterodactyl/yolks:java_21",
                    "startup": "java -jar {{SERVER_JARFILE}}",
                    "relationships": {
                        "variables": {"data": [{"attributes": {"env_variable": "SERVER_JARFILE", "default_value": "server.jar"}}]}
                    },
                }
            },
            {"attributes": {"id": 11, "name": "Forge"}},
        ]
    }
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/nests").respond(200, json=nests)
        mock.get("/application/nests/1/eggs").respond(200, json=eggs)
        report = await sync_eggs(db, panel_client, [10, 12])

    assert (report.synced, report.failed) == (1, 1)
    assert report.errors == ["Egg 12 not found on the panel"]

    rows = (await db.execute(select(PanelEgg))).scalars().all()
    assert len(rows) == 1
    egg = rows[0]
    assert (egg.name, egg.is_active, egg.nest_id) == ("Paper", True, 1)
    assert egg.environment_variables == [{"name": "SERVER_JARFILE", "default": "server.jar"}]


@pytest.mark.asyncio
async def test_sync_eggs_requires_a_match(db, panel_client):
    with pytest.raises(ValidationError):
        await sync_eggs(db, panel_client, [])

    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/nests").respond(200, json={"data": []})
        with pytest.raises(ValidationError, match="No eggs were synced"):
            await sync_eggs(db, panel_client, [10])


@pytest.mark.asyncio
async def test_sync_allocations_keeps_priority(db, panel_client):
    db.add(PanelAllocation(allocation_id=101, ip="10.0.0.9", port=25566, node_id=3, priority=7))
    await db.commit()

    nodes = {"data": [{"attributes": {"id": 3, "name": "node-a"}}]}
    allocations = {
        "data": [
            {"attributes": {"id": 101, "ip": "10.0.0.1", "port": 25566, "assigned": False}},
            {"attributes": {"id": 102, "ip": "10.0.0.1", "ip_alias": "mc.example", "port": 25567, "assigned": False}},
            {"attributes": {"id": 103, "ip": "", "port": 25568, "assigned": False}},
        ]
    }
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/nodes").respond(200, json=nodes)
        mock.get("/application/nodes/3/allocations").respond(200, json=allocations)
        report = await sync_allocations(db, panel_client)

    assert (report.synced, report.failed) == (2, 1)
    rows = {r.allocation_id: r for r in (await db.execute(select(PanelAllocation))).scalars().all()}
    assert rows[101].priority == 7
    assert rows[101].ip == "10.0.0.1"
    assert rows[102].priority == 0
    assert rows[102].ip_alias == "mc.example"

    updated = await set_allocation_priority(db, rows[102].id, 10)
    assert updated.priority == 10
