"""Service layer for the relay."""

from chatrelay.services.relay_service import (
    ActiveStreamManager,
    RelayService,
    RelaySession,
    RelayState,
)

__all__ = ["ActiveStreamManager", "RelayService", "RelaySession", "RelayState"]
