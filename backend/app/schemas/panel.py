from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class PanelCredentialsRequest(BaseModel):
    panel_url: str = Field(min_length=1, max_length=255)
    api_key: str = Field(min_length=1)


class PanelConfigOut(BaseModel):
    panel_url: str
    api_key_masked: str
    source: str  # database|environment|none
    last_connected_at: Optional[datetime] = None
    legacy_plaintext: bool = False


class TestConnectionOut(BaseModel):
    ok: bool
    detail: str
    meta: Optional[dict[str, Any]] = None


class ConnectOut(BaseModel):
    ok: bool = True
    panel_url: str
    last_connected_at: Optional[datetime]


class DisconnectOut(BaseModel):
    ok: bool = True
    servers_removed: int


class PanelSettingsSchema(BaseModel):
    default_nest_id: Optional[int] = Field(default=None, gt=0)
    default_location_id: Optional[int] = Field(default=None, gt=0)


class EggVariable(BaseModel):
    name: str
    default: Any = ""


class EggOut(BaseModel):
    id: int
    egg_id: int
    nest_id: int
    name: str
    docker_image: Optional[str]
    startup_command: Optional[str]
    environment_variables: List[EggVariable]
    is_active: bool


class EggSyncRequest(BaseModel):
    egg_ids: List[int] = Field(min_length=1)


class AllocationOut(BaseModel):
    id: int
    allocation_id: int
    ip: str
    ip_alias: Optional[str]
    port: int
    node_id: int
    priority: int
    is_active: bool


class AllocationPriorityRequest(BaseModel):
    priority: int


class SyncReportOut(BaseModel):
    synced: int
    failed: int
    total: int
    results: List[dict[str, Any]] = []
    errors: List[str] = []
