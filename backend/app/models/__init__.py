from app.models.app_setting import AppSetting
from app.models.ledger import LedgerEntryType, LedgerTransaction
from app.models.panel_allocation import PanelAllocation
from app.models.panel_config import PanelConfig
from app.models.panel_egg import PanelEgg
from app.models.reward import RewardCompletion, RewardLink
from app.models.server import ProvisionedServer
from app.models.user import User

__all__ = [
    "AppSetting",
    "LedgerEntryType",
    "LedgerTransaction",
    "PanelAllocation",
    "PanelConfig",
    "PanelEgg",
    "ProvisionedServer",
    "RewardCompletion",
    "RewardLink",
    "User",
]
