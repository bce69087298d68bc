import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
import respx
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.crypto import SecretCipher
from app.models.panel_allocation import PanelAllocation
from app.models.panel_config import PanelConfig
from app.models.panel_egg import PanelEgg
from app.models.server import ProvisionedServer
from app.services.errors import (
    ConfigurationError,
    InsufficientResourceError,
    NotFoundError,
    RemoteAPIError,
    ValidationError,
)
from app.services.ledger import get_usage
from app.services.panel.client import PanelClient
from app.services.panel.config_resolver import PanelConfigResolver
from app.services.provisioning import (
    ServerRequest,
    delete_owner_servers,
    delete_server,
    egg_environment,
    pick_allocation,
    provision_server,
    resize_server,
    validate_name,
)
from app.services.settings_store import set_panel_settings
from panel_payloads import PANEL_API, allocation, server_payload

NEEDS_ALLOCATION = {"errors": [{"detail": "The allocation field is required."}]}


async def _server_count(db) -> int:
    return (await db.execute(select(func.count(ProvisionedServer.id)))).scalar_one()


@pytest.fixture
def offline_client(session_factory, cipher):
    resolver = PanelConfigResolver(session_factory=session_factory, cipher=cipher, env_url="", env_key="")
    return PanelClient(resolver, timeout=5)


@pytest.fixture
def spy_client():
    client = AsyncMock(spec=PanelClient)
    client.is_configured.return_value = True
    return client


@pytest_asyncio.fixture
async def broken_client(db, session_factory, cipher):
    """Stored key encrypted under a secret this deployment no longer has."""
    stale = SecretCipher("rotated-away-secret").encrypt("ptla_stored_key")
    db.add(PanelConfig(panel_url="https://panel.example", api_key=stale))
    await db.commit()
    resolver = PanelConfigResolver(session_factory=session_factory, cipher=cipher, env_url="", env_key="")
    return PanelClient(resolver, timeout=5)


@pytest_asyncio.fixture
async def panel_cache(db):
    db.add(
        PanelEgg(
            egg_id=3,
            nest_id=1,
            name="Paper",
            docker_image="ghcr.io/pterodactyl/yolks:java_21",
            startup_command="java -jar {{SERVER_JARFILE}}",
            environment_variables=[{"name": "SERVER_JARFILE", "default": "server.jar"}],
        )
    )
    db.add(PanelAllocation(allocation_id=100, ip="10.0.0.1", port=25565, node_id=1, priority=0))
    db.add(PanelAllocation(allocation_id=101, ip="10.0.0.1", port=25566, node_id=1, priority=5))
    await db.commit()


@pytest_asyncio.fixture
async def owner(make_user):
    return await make_user(
        purchased_ram_mb=4096,
        purchased_cpu_percent=200,
        purchased_storage_mb=10240,
        server_slots=2,
        panel_user_id="5",
    )


def _request(**overrides):
    fields = {"name": "My Server", "ram_mb": 2048, "cpu_percent": 100, "storage_mb": 5120, "egg_id": 3}
    fields.update(overrides)
    return ServerRequest(**fields)


@pytest.mark.parametrize("name", ["", "   ", "x" * 51, "bad/name", "emoji 🎮"])
def test_validate_name_rejects(name):
    with pytest.raises(ValidationError):
        validate_name(name)


def test_validate_name_trims():
    assert validate_name("  Survival_01 - main ") == "Survival_01 - main"


def test_egg_environment_accepts_both_shapes():
    normalized = [{"name": "SERVER_JARFILE", "default": "server.jar"}]
    raw = [{"object": "egg_variable", "attributes": {"env_variable": "VERSION", "default_value": "latest"}}]
    assert egg_environment(normalized) == {"SERVER_JARFILE": "server.jar"}
    assert egg_environment(raw) == {"VERSION": "latest"}
    assert egg_environment(None) == {}


@pytest.mark.asyncio
async def test_pick_allocation_prefers_priority(db, panel_cache):
    assert (await pick_allocation(db)).allocation_id == 101


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "no/slashes"},
        {"ram_mb": 512},
        {"cpu_percent": 50},
        {"storage_mb": 1024},
        {"ram_mb": 8192},
        {"storage_mb": 20480},
    ],
)
async def test_failed_checks_never_reach_the_panel(db, owner, spy_client, overrides):
    with pytest.raises((ValidationError, InsufficientResourceError)):
        await provision_server(db, spy_client, owner.id, _request(**overrides))
    spy_client.create_server.assert_not_awaited()
    assert await _server_count(db) == 0


@pytest.mark.asyncio
async def test_full_slots_never_reach_the_panel(db, owner, make_server, spy_client):
    await make_server(owner.id)
    await make_server(owner.id, ram_mb=0, cpu_percent=0, storage_mb=0)
    with pytest.raises(InsufficientResourceError) as exc:
        await provision_server(db, spy_client, owner.id, _request())
    assert exc.value.resource == "slots"
    assert "server limit (2 slots)" in exc.value.message
    spy_client.create_server.assert_not_awaited()


@pytest.mark.asyncio
async def test_name_is_checked_before_capacity(db, make_user, spy_client):
    broke = await make_user()
    with pytest.raises(ValidationError):
        await provision_server(db, spy_client, broke.id, _request(name="bad/name"))


@pytest.mark.asyncio
async def test_shortfall_reports_resource(db, owner, spy_client):
    with pytest.raises(InsufficientResourceError) as exc:
        await provision_server(db, spy_client, owner.id, _request(ram_mb=5120))
    detail = exc.value.to_detail()
    assert detail["resource"] == "ram"
    assert detail["have"] == 4096
    assert detail["need"] == 5120


@pytest.mark.asyncio
async def test_local_only_when_panel_not_configured(db, owner, offline_client):
    outcome = await provision_server(db, offline_client, owner.id, _request(name="  local box "))
    server = outcome.server
    assert server.id is not None
    assert server.remote_id is None
    assert server.name == "local box"
    assert server.public_address is None
    assert outcome.warnings == []


@pytest.mark.asyncio
async def test_remote_create_records_server_and_address(db, owner, panel_cache, panel_client):
    created = server_payload(
        server_id=77,
        allocations=[allocation(101, ip="10.0.0.1", port=25566, alias="play.example.com", is_default=True)],
    )
    with respx.mock(base_url=PANEL_API) as mock:
        route = mock.post("/application/servers").respond(201, json=created)
        outcome = await provision_server(db, panel_client, owner.id, _request())

    body = json.loads(route.calls.last.request.content)
    assert body["user"] == 5
    assert body["egg"] == 3
    assert body["allocation"] == {"default": 101}
    assert body["limits"] == {"memory": 2048, "swap": 0, "disk": 5120, "io": 500, "cpu": 100}
    assert body["environment"] == {"SERVER_JARFILE": "server.jar"}

    assert outcome.server.remote_id == "77"
    assert outcome.server.public_address == "play.example.com:25566"
    assert outcome.warnings == []


@pytest.mark.asyncio
async def test_remote_failure_leaves_no_local_row(db, owner, panel_cache, panel_client):
    with respx.mock(base_url=PANEL_API) as mock:
        mock.post("/application/servers").respond(422, json={"errors": [{"detail": "No nodes satisfy requirements."}]})
        with pytest.raises(RemoteAPIError) as exc:
            await provision_server(db, panel_client, owner.id, _request())
    assert "No nodes satisfy requirements." in exc.value.message
    assert await _server_count(db) == 0


@pytest.mark.asyncio
async def test_address_lookup_failure_is_not_fatal(db, owner, panel_cache, panel_client):
    with respx.mock(base_url=PANEL_API) as mock:
        mock.post("/application/servers").respond(201, json=server_payload(server_id=78))
        mock.get("/application/servers/78").respond(500, json={"detail": "oops"})
        outcome = await provision_server(db, panel_client, owner.id, _request())

    assert outcome.server.remote_id == "78"
    assert outcome.server.public_address is None
    assert len(outcome.warnings) == 1


@pytest.mark.asyncio
async def test_address_fetched_when_create_response_has_none(db, owner, panel_cache, panel_client):
    details = server_payload(server_id=79, allocations=[allocation(101, ip="10.0.0.1", port=25566)])
    with respx.mock(base_url=PANEL_API) as mock:
        mock.post("/application/servers").respond(201, json=server_payload(server_id=79))
        mock.get("/application/servers/79").respond(200, json=details)
        outcome = await provision_server(db, panel_client, owner.id, _request())
    assert outcome.server.public_address == "10.0.0.1:25566"


@pytest.mark.asyncio
async def test_unknown_egg(db, owner, panel_cache, panel_client):
    with pytest.raises(NotFoundError):
        await provision_server(db, panel_client, owner.id, _request(egg_id=99))


@pytest.mark.asyncio
async def test_no_allocations_is_a_configuration_error(db, owner, panel_client):
    db.add(PanelEgg(egg_id=3, nest_id=1, name="Paper", environment_variables=[]))
    await db.commit()
    with pytest.raises(ConfigurationError):
        await provision_server(db, panel_client, owner.id, _request())


@pytest.mark.asyncio
async def test_missing_panel_account(db, make_user, panel_cache, panel_client):
    user = await make_user(purchased_ram_mb=4096, purchased_cpu_percent=100, purchased_storage_mb=10240)
    with pytest.raises(ValidationError, match="Panel account not found"):
        await provision_server(db, panel_client, user.id, _request())


@pytest.mark.asyncio
async def test_local_commit_failure_removes_remote_server(db, owner, panel_cache, panel_client):
    boom = OperationalError("INSERT", {}, Exception("disk full"))
    with respx.mock(base_url=PANEL_API) as mock:
        mock.post("/application/servers").respond(201, json=server_payload(server_id=80, allocations=[allocation(101)]))
        removed = mock.delete("/application/servers/80").respond(204)
        with patch.object(db, "commit", AsyncMock(side_effect=boom)):
            with pytest.raises(OperationalError):
                await provision_server(db, panel_client, owner.id, _request())
    assert removed.called


@pytest.mark.asyncio
async def test_resize_checks_only_the_increase(db, owner, make_server, offline_client):
    server = await make_server(owner.id, ram_mb=2048, cpu_percent=100, storage_mb=5120)

    # 2048 MB purchased RAM remains free
    outcome = await resize_server(db, offline_client, server, ram_mb=4096)
    assert outcome.server.ram_mb == 4096

    with pytest.raises(InsufficientResourceError):
        await resize_server(db, offline_client, server, ram_mb=5120)

    outcome = await resize_server(db, offline_client, server, ram_mb=1024)
    assert outcome.server.ram_mb == 1024


@pytest.mark.asyncio
async def test_resize_remote_server_reports_allocation_retry(db, owner, make_server, panel_client):
    server = await make_server(owner.id, remote_id="12", ram_mb=2048)
    details = server_payload(server_id=12, primary=4, allocations=[allocation(4, is_default=True)])
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        patch_route = mock.patch("/application/servers/12/build")
        patch_route.side_effect = [
            httpx.Response(422, json=NEEDS_ALLOCATION),
            httpx.Response(200, json=details),
        ]
        outcome = await resize_server(db, panel_client, server, ram_mb=3072)

    assert outcome.server.ram_mb == 3072
    assert len(outcome.warnings) == 1


@pytest.mark.asyncio
async def test_resize_remote_failure_keeps_local_limits(db, owner, make_server, panel_client):
    server = await make_server(owner.id, remote_id="12", ram_mb=2048)
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=server_payload(server_id=12, primary=4))
        mock.patch("/application/servers/12/build").respond(500, json={"detail": "boom"})
        with pytest.raises(RemoteAPIError):
            await resize_server(db, panel_client, server, ram_mb=3072)
    await db.refresh(server)
    assert server.ram_mb == 2048


@pytest.mark.asyncio
async def test_delete_treats_remote_404_as_done(db, owner, make_server, panel_client):
    server = await make_server(owner.id, remote_id="12")
    with respx.mock(base_url=PANEL_API) as mock:
        mock.delete("/application/servers/12").respond(404, json={"errors": [{"detail": "Not found"}]})
        warnings = await delete_server(db, panel_client, server)
    assert warnings == []
    assert await _server_count(db) == 0


@pytest.mark.asyncio
async def test_delete_removes_local_row_even_if_remote_fails(db, owner, make_server, panel_client):
    server = await make_server(owner.id, remote_id="12")
    with respx.mock(base_url=PANEL_API) as mock:
        mock.delete("/application/servers/12").respond(500, json={"detail": "boom"})
        warnings = await delete_server(db, panel_client, server)
    assert len(warnings) == 1
    assert await _server_count(db) == 0


@pytest.mark.asyncio
async def test_delete_with_undecryptable_panel_key_still_frees_capacity(db, make_user, make_server, broken_client):
    user = await make_user(purchased_ram_mb=2048, purchased_cpu_percent=100, purchased_storage_mb=5120)
    server = await make_server(user.id, remote_id="77", ram_mb=2048)

    warnings = await delete_server(db, broken_client, server)

    assert warnings == ["panel configuration unusable; remote step skipped"]
    assert await _server_count(db) == 0
    assert (await get_usage(db, user.id)).available.ram == 2048


@pytest.mark.asyncio
async def test_delete_owner_servers_with_undecryptable_panel_key(db, make_user, make_server, broken_client):
    user = await make_user(server_slots=2)
    await make_server(user.id, remote_id="77")
    await make_server(user.id, remote_id=None, name="local")

    removed, warnings = await delete_owner_servers(db, broken_client, user.id)
    await db.commit()

    assert removed == 2
    assert len(warnings) == 1
    assert await _server_count(db) == 0


@pytest.mark.asyncio
async def test_empty_pool_rejects_first_server_without_panel_call(db, make_user, spy_client):
    user = await make_user(server_slots=1)
    with pytest.raises(InsufficientResourceError) as exc:
        await provision_server(db, spy_client, user.id, _request(ram_mb=1024))
    assert exc.value.resource == "ram"
    detail = exc.value.to_detail()
    assert (detail["have"], detail["need"]) == (0, 1024)
    spy_client.create_server.assert_not_awaited()
    assert await _server_count(db) == 0


@pytest.mark.asyncio
async def test_default_nest_supplies_egg_when_none_chosen(db, owner, panel_cache, panel_client):
    db.add(PanelEgg(egg_id=4, nest_id=2, name="Aardvark", environment_variables=[]))
    await set_panel_settings(db, {"default_nest_id": 1, "default_location_id": 2})
    await db.commit()

    created = server_payload(server_id=81, allocations=[allocation(101, is_default=True)])
    with respx.mock(base_url=PANEL_API) as mock:
        route = mock.post("/application/servers").respond(201, json=created)
        await provision_server(db, panel_client, owner.id, _request(egg_id=None))

    body = json.loads(route.calls.last.request.content)
    assert body["egg"] == 3
    assert body["deploy"]["locations"] == [2]


@pytest.mark.asyncio
async def test_egg_required_without_default_nest(db, owner, panel_cache, panel_client):
    with pytest.raises(ValidationError, match="Egg is required"):
        await provision_server(db, panel_client, owner.id, _request(egg_id=None))
