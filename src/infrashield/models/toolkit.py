"""Toolkit, client and purchase records held by the store."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ToolkitStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"


class PurchaseType(str, Enum):
    DIRECT = "direct"
    SUBSCRIPTION = "subscription"


class Toolkit(BaseModel):
    id: int
    name: str
    platform: str
    filename: str
    content: str = ""
    description: str = ""
    bundled_script_ids: list[int] = []
    status: ToolkitStatus = ToolkitStatus.ACTIVE

    @property
    def is_bundle(self) -> bool:
        return bool(self.bundled_script_ids)


class Client(BaseModel):
    id: str
    email: str


class Purchase(BaseModel):
    client_id: str
    toolkit_id: int
    purchase_type: PurchaseType = PurchaseType.DIRECT
    purchased_at: date
    expires_at: Optional[date] = None

    def is_active(self, today: date) -> bool:
        if self.purchase_type == PurchaseType.DIRECT:
            return True
        return self.expires_at is not None and self.expires_at >= today
