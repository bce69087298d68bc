from __future__ import annotations

import logging
from typing import Any

from app.services.errors import PanelIntegrityError, RemoteAPIError
from app.services.panel.base import BuildOutcome, PrimaryAllocation
from app.services.panel.client import PanelClient
from app.services.panel.normalizer import (
    coerce_id,
    default_allocation_id,
    find_primary_allocation,
    remote_requires_allocation,
)

logger = logging.getLogger(__name__)

LIMIT_FIELDS = ("memory", "swap", "disk", "io", "cpu")
LIMIT_DEFAULTS = {"swap": 0, "io": 500}
FEATURE_LIMIT_DEFAULTS = {"databases": 0, "allocations": 1, "backups": 0}


def _server_attrs(payload: Any) -> dict[str, Any]:
    if isinstance(payload, dict):
        attrs = payload.get("attributes")
        if isinstance(attrs, dict):
            return attrs
        return payload
    return {}


def build_payload(current: Any, limits: dict[str, int | None]) -> dict[str, Any]:
    """Merge requested limits over what the panel already has.

    Unspecified fields keep the remote value; hardcoded defaults only apply
    when the panel reports nothing for that field.
    """
    attrs = _server_attrs(current)
    cur_limits = attrs.get("limits") if isinstance(attrs.get("limits"), dict) else {}
    cur_features = attrs.get("feature_limits") if isinstance(attrs.get("feature_limits"), dict) else {}

    merged: dict[str, Any] = {}
    for name in LIMIT_FIELDS:
        wanted = limits.get(name)
        if wanted is not None:
            merged[name] = int(wanted)
        elif cur_limits.get(name) is not None:
            merged[name] = cur_limits[name]
        elif name in LIMIT_DEFAULTS:
            merged[name] = LIMIT_DEFAULTS[name]

    features = {
        name: cur_features[name] if cur_features.get(name) is not None else default
        for name, default in FEATURE_LIMIT_DEFAULTS.items()
    }
    return {"limits": merged, "feature_limits": features}


async def get_primary_allocation(client: PanelClient, server_id: str | int) -> PrimaryAllocation:
    res = await client.get_server_details(server_id)
    if not res.success:
        raise RemoteAPIError(f"Failed to fetch server details: {res.message}", payload=res.error, status=res.status)
    return find_primary_allocation(res.data)


def _retry_allocation_id(details: Any) -> int:
    allocation_id = default_allocation_id(details)
    if allocation_id is not None:
        return allocation_id
    fallback = coerce_id(_server_attrs(details).get("allocation"))
    if fallback is not None:
        return fallback
    raise PanelIntegrityError(
        "Build update requires an allocation but none could be found on the server; "
        "check the server configuration in the panel"
    )


async def update_server_build(client: PanelClient, server_id: str | int, limits: dict[str, int | None]) -> BuildOutcome:
    """PATCH the server build, retrying once with ``allocation.default`` if the panel asks for it."""
    details_res = await client.get_server_details(server_id)
    if not details_res.success:
        raise RemoteAPIError(
            f"Failed to fetch server details: {details_res.message}",
            payload=details_res.error,
            status=details_res.status,
        )
    details = details_res.data

    payload = build_payload(details, limits)
    res = await client.patch_build(server_id, payload)
    if res.success:
        return BuildOutcome(data=res.data, payload=payload)

    if not remote_requires_allocation(res.error):
        raise RemoteAPIError(f"Build update failed: {res.message}", payload=res.error, status=res.status)

    allocation_id = _retry_allocation_id(details)
    retry_payload = {**payload, "allocation": {"default": allocation_id}}
    logger.info("build update needs allocation, retrying server_id=%s allocation_id=%s", server_id, allocation_id)

    res = await client.patch_build(server_id, retry_payload)
    if not res.success:
        raise RemoteAPIError(f"Build update failed: {res.message}", payload=res.error, status=res.status)
    return BuildOutcome(data=res.data, retried_with_allocation=True, payload=retry_payload)
