from __future__ import annotations

from app.services.panel.client import PanelClient
from app.services.panel.config_resolver import PanelConfigResolver

# Process default; tests build their own resolver and client.
panel_config_resolver = PanelConfigResolver()


def get_panel_client() -> PanelClient:
    return PanelClient(panel_config_resolver)


def clear_panel_config_cache() -> None:
    panel_config_resolver.clear()
