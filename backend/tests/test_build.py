import json

import httpx
import pytest
import respx

from app.services.errors import PanelIntegrityError, RemoteAPIError
from app.services.panel.build import build_payload, get_primary_allocation, update_server_build
from panel_payloads import PANEL_API, allocation, server_payload

NEEDS_ALLOCATION = {
    "errors": [{"code": "ValidationException", "status": "422", "detail": "The allocation field is required."}]
}


def _body(call):
    return json.loads(call.request.content)


def test_build_payload_keeps_remote_values_for_unspecified_fields():
    current = server_payload(limits={"memory": 1024, "swap": 512, "disk": 5120, "io": 800, "cpu": 100})
    payload = build_payload(current, {"memory": 2048, "cpu": None, "disk": None})
    assert payload["limits"] == {"memory": 2048, "swap": 512, "disk": 5120, "io": 800, "cpu": 100}
    assert payload["feature_limits"] == {"databases": 0, "allocations": 1, "backups": 0}


def test_build_payload_defaults_only_when_remote_is_silent():
    current = {"attributes": {"limits": {"memory": 1024, "disk": 5120, "cpu": 100}}}
    payload = build_payload(current, {"memory": 4096})
    assert payload["limits"]["swap"] == 0
    assert payload["limits"]["io"] == 500


@pytest.mark.asyncio
async def test_successful_patch_does_not_retry(panel_client):
    details = server_payload(primary=4, allocations=[allocation(4, is_default=True)])
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        patch = mock.patch("/application/servers/12/build").respond(200, json=details)
        outcome = await update_server_build(panel_client, 12, {"memory": 2048})

    assert patch.call_count == 1
    assert not outcome.retried_with_allocation
    assert "allocation" not in _body(patch.calls.last)
    assert _body(patch.calls.last)["limits"]["memory"] == 2048


@pytest.mark.asyncio
async def test_retries_once_with_default_allocation(panel_client):
    details = server_payload(
        primary=4,
        allocations=[allocation(4, port=25565), allocation(5, port=25566, is_default=True)],
    )
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        patch = mock.patch("/application/servers/12/build")
        patch.side_effect = [
            httpx.Response(422, json=NEEDS_ALLOCATION),
            httpx.Response(200, json=details),
        ]
        outcome = await update_server_build(panel_client, 12, {"memory": 2048})

    assert patch.call_count == 2
    assert outcome.retried_with_allocation
    retry = _body(patch.calls[1])
    assert retry["allocation"] == {"default": 5}
    assert retry["limits"]["memory"] == 2048


@pytest.mark.asyncio
async def test_retry_falls_back_to_primary_allocation_attribute(panel_client):
    details = server_payload(primary="9")
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        patch = mock.patch("/application/servers/12/build")
        patch.side_effect = [
            httpx.Response(422, json=NEEDS_ALLOCATION),
            httpx.Response(200, json=details),
        ]
        await update_server_build(panel_client, 12, {"cpu": 200})

    assert _body(patch.calls[1])["allocation"] == {"default": 9}


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(panel_client):
    body = {"errors": [{"detail": "The memory must be at least 0."}]}
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=server_payload(primary=4, allocations=[allocation(4)]))
        patch = mock.patch("/application/servers/12/build").respond(422, json=body)
        with pytest.raises(RemoteAPIError) as exc:
            await update_server_build(panel_client, 12, {"memory": -1})

    assert patch.call_count == 1
    assert exc.value.payload == body
    assert exc.value.status == 422


@pytest.mark.asyncio
async def test_second_failure_surfaces_remote_payload(panel_client):
    second = {"errors": [{"detail": "Allocation 5 is not assigned to this server."}]}
    details = server_payload(primary=5, allocations=[allocation(5, is_default=True)])
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        patch = mock.patch("/application/servers/12/build")
        patch.side_effect = [
            httpx.Response(422, json=NEEDS_ALLOCATION),
            httpx.Response(422, json=second),
        ]
        with pytest.raises(RemoteAPIError) as exc:
            await update_server_build(panel_client, 12, {"memory": 2048})

    assert patch.call_count == 2
    assert exc.value.payload == second


@pytest.mark.asyncio
async def test_retry_without_any_allocation_is_an_integrity_error(panel_client):
    details = server_payload(primary=None)
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        mock.patch("/application/servers/12/build").respond(422, json=NEEDS_ALLOCATION)
        with pytest.raises(PanelIntegrityError):
            await update_server_build(panel_client, 12, {"memory": 2048})


@pytest.mark.asyncio
async def test_get_primary_allocation(panel_client):
    details = server_payload(
        primary=5,
        allocations=[allocation(4, port=1000, is_default=True), allocation(5, ip="10.0.0.5", port=2000)],
    )
    with respx.mock(base_url=PANEL_API) as mock:
        mock.get("/application/servers/12").respond(200, json=details)
        primary = await get_primary_allocation(panel_client, 12)
    assert (primary.id, primary.ip, primary.port) == (5, "10.0.0.5", 2000)
