from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings
from app.services.errors import ConfigurationError, PanelTimeoutError
from app.services.http_client import build_async_client
from app.services.panel.base import ApiResult, PanelCredentials, TestConnectionResult
from app.services.panel.config_resolver import PanelConfigResolver

logger = logging.getLogger(__name__)

MISSING_CONFIG_MESSAGE = (
    "Panel configuration is missing. Connect a panel in the admin area "
    "or set PTERODACTYL_URL and PTERODACTYL_API_KEY."
)

SERVER_DETAIL_INCLUDES = "allocations,user,subusers"
POWER_SIGNALS = ("start", "stop", "restart", "kill")


def _api_base(url: str) -> str:
    return f"{url.rstrip('/')}/api"


def _items(data: Any) -> list[dict[str, Any]]:
    """``data`` list of a panel list response, tolerating odd shapes."""
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return [x for x in data["data"] if isinstance(x, dict)]
    return []


def _attributes(item: dict[str, Any]) -> dict[str, Any]:
    attrs = item.get("attributes")
    return attrs if isinstance(attrs, dict) else {}


class PanelClient:
    """Thin async wrapper over the panel's application API.

    Every call re-resolves credentials through the resolver so an admin
    reconnect takes effect without a restart. Non-2xx answers come back as a
    failed :class:`ApiResult`; only timeouts raise.
    """

    def __init__(self, resolver: PanelConfigResolver, timeout: float | None = None):
        self.resolver = resolver
        self.timeout = float(settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout)

    async def credentials(self) -> PanelCredentials:
        creds = await self.resolver.get_config()
        if not creds.is_complete:
            raise ConfigurationError(MISSING_CONFIG_MESSAGE)
        return creds

    async def is_configured(self) -> bool:
        return await self.resolver.is_configured()

    async def call(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResult:
        creds = await self.credentials()
        try:
            async with build_async_client(_api_base(creds.url), creds.api_key, self.timeout) as client:
                r = await client.request(method, path, json=body, params=params)
        except httpx.TimeoutException as e:
            logger.warning("panel request timed out method=%s path=%s", method, path)
            raise PanelTimeoutError(f"Panel did not answer within {self.timeout:g}s ({method} {path})") from e
        except httpx.TransportError as e:
            logger.warning("panel request failed method=%s path=%s err=%s", method, path, str(e)[:220])
            return ApiResult(success=False, error=str(e) or e.__class__.__name__)

        if r.status_code >= 400:
            try:
                err: Any = r.json()
            except ValueError:
                err = r.text[:300] or f"HTTP {r.status_code}"
            logger.warning("panel api error method=%s path=%s status=%s", method, path, r.status_code)
            return ApiResult(success=False, error=err, status=r.status_code)

        data: Any = None
        if r.status_code != 204 and r.content:
            try:
                data = r.json()
            except ValueError:
                data = r.text
        return ApiResult(success=True, data=data, status=r.status_code)

    # servers

    async def list_servers(self, page: int = 1, per_page: int = 50) -> ApiResult:
        return await self.call("GET", "/application/servers", params={"page": page, "per_page": per_page})

    async def get_server(self, server_id: str | int) -> ApiResult:
        return await self.call("GET", f"/application/servers/{server_id}")

    async def get_server_details(self, server_id: str | int) -> ApiResult:
        return await self.call("GET", f"/application/servers/{server_id}", params={"include": SERVER_DETAIL_INCLUDES})

    async def create_server(self, payload: dict[str, Any]) -> ApiResult:
        return await self.call("POST", "/application/servers", payload)

    async def delete_server(self, server_id: str | int) -> ApiResult:
        return await self.call("DELETE", f"/application/servers/{server_id}")

    async def patch_build(self, server_id: str | int, payload: dict[str, Any]) -> ApiResult:
        return await self.call("PATCH", f"/application/servers/{server_id}/build", payload)

    async def send_power_signal(self, server_id: str | int, signal: str) -> ApiResult:
        if signal not in POWER_SIGNALS:
            raise ValueError(f"Unknown power signal: {signal}")
        return await self.call("POST", f"/application/servers/{server_id}/power", {"signal": signal})

    async def suspend_server(self, server_id: str | int) -> ApiResult:
        return await self.call("POST", f"/application/servers/{server_id}/suspend")

    async def unsuspend_server(self, server_id: str | int) -> ApiResult:
        return await self.call("POST", f"/application/servers/{server_id}/unsuspend")

    # users

    async def list_users(self) -> ApiResult:
        return await self.call("GET", "/application/users")

    async def get_user(self, user_id: str | int) -> ApiResult:
        return await self.call("GET", f"/application/users/{user_id}")

    async def create_user(self, payload: dict[str, Any]) -> ApiResult:
        return await self.call("POST", "/application/users", payload)

    async def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        res = await self.call("GET", "/application/users", params={"filter[email]": email})
        res.unwrap("list users")
        wanted = (email or "").strip().lower()
        for item in _items(res.data):
            attrs = _attributes(item)
            if str(attrs.get("email") or "").strip().lower() == wanted:
                return attrs
        return None

    # nests / eggs

    async def list_nests(self) -> ApiResult:
        return await self.call("GET", "/application/nests")

    async def list_eggs(self, nest_id: int) -> ApiResult:
        return await self.call("GET", f"/application/nests/{nest_id}/eggs", params={"include": "variables"})

    async def list_all_eggs(self) -> list[dict[str, Any]]:
        """Every egg across every nest, flattened with ``nest_id``/``nest_name``."""
        nests = (await self.list_nests()).unwrap("list nests")
        out: list[dict[str, Any]] = []
        for nest in _items(nests):
            nest_attrs = _attributes(nest)
            nest_id = nest_attrs.get("id")
            if nest_id is None:
                continue
            res = await self.list_eggs(nest_id)
            if not res.success:
                logger.warning("egg listing failed nest_id=%s err=%s", nest_id, res.message[:220])
                continue
            for egg in _items(res.data):
                out.append({**_attributes(egg), "nest_id": nest_id, "nest_name": nest_attrs.get("name")})
        return out

    # locations / nodes / allocations

    async def list_locations(self) -> ApiResult:
        return await self.call("GET", "/application/locations")

    async def list_nodes(self) -> ApiResult:
        return await self.call("GET", "/application/nodes")

    async def list_node_allocations(self, node_id: int) -> ApiResult:
        return await self.call("GET", f"/application/nodes/{node_id}/allocations", params={"per_page": 500})

    async def list_unassigned_allocations(self) -> list[dict[str, Any]]:
        nodes = (await self.list_nodes()).unwrap("list nodes")
        out: list[dict[str, Any]] = []
        for node in _items(nodes):
            node_attrs = _attributes(node)
            node_id = node_attrs.get("id")
            if node_id is None:
                continue
            res = await self.list_node_allocations(node_id)
            if not res.success:
                logger.warning("allocation listing failed node_id=%s err=%s", node_id, res.message[:220])
                continue
            for alloc in _items(res.data):
                attrs = _attributes(alloc)
                if attrs.get("assigned"):
                    continue
                out.append({**attrs, "node_id": node_id, "node_name": node_attrs.get("name")})
        return out


async def test_connection(panel_url: str, api_key: str, timeout: float | None = None) -> TestConnectionResult:
    """Test an explicit URL/key pair (not the resolved config)."""
    t = float(settings.PANEL_TEST_TIMEOUT_SECONDS if timeout is None else timeout)
    try:
        async with build_async_client(_api_base(panel_url), api_key, t) as client:
            r = await client.get("/application/servers", params={"per_page": 1})
    except httpx.TimeoutException:
        return TestConnectionResult(ok=False, detail="Connection timeout. Please check your panel URL.")
    except httpx.ConnectError:
        return TestConnectionResult(ok=False, detail="Cannot connect to panel. Please check your panel URL.")
    except httpx.HTTPError as e:
        return TestConnectionResult(ok=False, detail=str(e) or "Unknown error occurred")

    if r.status_code in (401, 403):
        return TestConnectionResult(ok=False, detail="Invalid API key. Please check your API key.", meta={"status": r.status_code})
    if r.status_code == 404:
        return TestConnectionResult(ok=False, detail="Panel URL not found. Please check your panel URL.", meta={"status": r.status_code})
    if r.status_code >= 400:
        return TestConnectionResult(
            ok=False,
            detail=f"Connection error: {r.status_code} {r.reason_phrase}".strip(),
            meta={"status": r.status_code},
        )

    meta: dict[str, Any] = {"status": r.status_code}
    try:
        js = r.json()
        total = (js.get("meta") or {}).get("pagination", {}).get("total")
        if total is not None:
            meta["server_count"] = total
    except (ValueError, AttributeError):
        pass
    return TestConnectionResult(ok=True, detail="Connection successful!", meta=meta)
