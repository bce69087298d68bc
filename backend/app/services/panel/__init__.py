from app.services.panel.base import ApiResult, PanelCredentials, PrimaryAllocation, TestConnectionResult
from app.services.panel.client import PanelClient, test_connection
from app.services.panel.config_resolver import ConfigCache, PanelConfigResolver

__all__ = [
    "ApiResult",
    "ConfigCache",
    "PanelClient",
    "PanelConfigResolver",
    "PanelCredentials",
    "PrimaryAllocation",
    "TestConnectionResult",
    "test_connection",
]
