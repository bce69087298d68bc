from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.services.errors import PanelIntegrityError
from app.services.panel.base import PrimaryAllocation


@dataclass(frozen=True)
class AllocationRef:
    id: int | None
    ip: str | None
    alias: str | None
    port: int | None
    is_default: bool


@dataclass(frozen=True)
class RelationshipList:
    allocations: tuple[AllocationRef, ...]


@dataclass(frozen=True)
class IncludedList:
    allocations: tuple[AllocationRef, ...]


# relationships.allocations.data (top level or under attributes), or side-loaded `included`
AllocationListing = RelationshipList | IncludedList


def coerce_id(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _is_true_flag(value: Any) -> bool:
    return value is True or (type(value) is int and value == 1)


def _attrs(obj: Any) -> dict[str, Any]:
    if not isinstance(obj, dict):
        return {}
    attrs = obj.get("attributes")
    return attrs if isinstance(attrs, dict) else obj


def _to_ref(obj: Any) -> AllocationRef | None:
    if not isinstance(obj, dict):
        return None
    attrs = _attrs(obj)
    alias = attrs.get("ip_alias") or attrs.get("alias")
    ip = attrs.get("ip")
    port = coerce_id(attrs.get("port"))
    return AllocationRef(
        id=coerce_id(attrs.get("id", obj.get("id"))),
        ip=str(ip) if ip else None,
        alias=str(alias) if alias else None,
        port=port or None,
        is_default=_is_true_flag(attrs.get("is_default")),
    )


def _relationship_allocations(payload: dict[str, Any]) -> list[Any] | None:
    for holder in (payload, _attrs(payload)):
        rel = holder.get("relationships")
        if not isinstance(rel, dict):
            continue
        allocations = rel.get("allocations")
        if isinstance(allocations, dict) and isinstance(allocations.get("data"), list):
            return allocations["data"]
    return None


def parse_allocation_listing(payload: Any) -> AllocationListing | None:
    if not isinstance(payload, dict):
        return None

    rel = _relationship_allocations(payload)
    if rel is not None:
        return RelationshipList(tuple(r for r in (_to_ref(x) for x in rel) if r is not None))

    included = payload.get("included")
    if isinstance(included, list):
        items = [x for x in included if isinstance(x, dict) and x.get("type") == "allocation"]
        return IncludedList(tuple(r for r in (_to_ref(x) for x in items) if r is not None))

    return None


def pick_default(listing: AllocationListing | None) -> AllocationRef | None:
    if listing is None or not listing.allocations:
        return None
    for ref in listing.allocations:
        if ref.is_default:
            return ref
    return listing.allocations[0]


def format_address(host: str | None, port: int | None) -> str | None:
    if not port or not host:
        return None
    return f"{host}:{port}"


def extract_public_address(payload: Any) -> str | None:
    """``alias:port`` (or ``ip:port``) of the default allocation, else ``None``."""
    ref = pick_default(parse_allocation_listing(payload))
    if ref is None:
        return None
    return format_address(ref.alias or ref.ip, ref.port)


def default_allocation_id(payload: Any) -> int | None:
    ref = pick_default(parse_allocation_listing(payload))
    return ref.id if ref else None


def find_primary_allocation(payload: Any) -> PrimaryAllocation:
    # attributes.allocation is authoritative; is_default flags are ignored
    attrs = _attrs(payload)
    raw_id = attrs.get("allocation")
    if raw_id is None or raw_id == "":
        raise PanelIntegrityError("Primary allocation ID not found in server attributes")

    primary_id = coerce_id(raw_id)
    if primary_id is None:
        raise PanelIntegrityError(f"Invalid allocation ID format: {raw_id!r}")

    rel = _relationship_allocations(payload) if isinstance(payload, dict) else None
    if not rel:
        raise PanelIntegrityError("No allocations found in relationships")

    for obj in rel:
        ref = _to_ref(obj)
        if ref is not None and ref.id == primary_id:
            return PrimaryAllocation(id=primary_id, alias=ref.alias, ip=ref.ip, port=ref.port)

    raise PanelIntegrityError(
        f"Primary allocation ID {primary_id} exists but allocation details not found in relationships"
    )


def remote_requires_allocation(error: Any) -> bool:
    # the build endpoint's allocation requirement is undocumented; match on error text
    if error is None:
        return False
    if isinstance(error, str):
        return "allocation" in error.lower()
    if not isinstance(error, dict):
        return False

    detail = error.get("detail") or error.get("message") or ""
    if isinstance(detail, str) and "allocation" in detail.lower():
        return True

    errors = error.get("errors")
    if isinstance(errors, list):
        for e in errors:
            if isinstance(e, dict) and "allocation" in str(e.get("detail") or "").lower():
                return True
    return False


def resource_id(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    raw = payload.get("id")
    if raw is None:
        raw = _attrs(payload).get("id")
    return str(raw) if raw is not None and raw != "" else None
