from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Any, Dict, Literal, Optional


class MonitorRequest(BaseModel):
    state: Literal["on", "off"]


class SwitchEventIn(BaseModel):
    device_id: str
    value: str
    name: Optional[str] = None
    source: Optional[str] = None
    description: Optional[str] = None


class SimFaultsRequest(BaseModel):
    drop_commands: int = Field(default=0, ge=0)
    fail_commands: int = Field(default=0, ge=0)
    fail_refresh: bool = False
    fail_read: bool = False


class SettingsUpdateRequest(BaseModel):
    updates: Dict[str, Any]
