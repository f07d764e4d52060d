"""
ServiceHandle: a background service the ServiceController manipulates.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ServiceScope(str, Enum):
    SYSTEM = "system"
    USER = "user"


class ServiceHandle(BaseModel):
    """Service name, scope and desired state. Bound to one invocation, never persisted."""

    name: str
    scope: ServiceScope = ServiceScope.SYSTEM
    desired: str = "active"  # active, inactive, enabled, disabled

    @property
    def unit(self) -> str:
        if "." in self.name:
            return self.name
        return f"{self.name}.service"

    def __str__(self) -> str:
        suffix = " (user)" if self.scope == ServiceScope.USER else ""
        return f"{self.unit}{suffix}"
