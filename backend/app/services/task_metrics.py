from __future__ import annotations
from dataclasses import dataclass

@dataclass
class TaskRunStats:
    scanned_servers: int = 0
    updated_servers: int = 0
    still_missing: int = 0
    skipped: bool = False
