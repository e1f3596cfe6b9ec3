import logging
from typing import Optional

from pydantic import BaseModel

from app.models.room import Occupancy, Role
from app.services.session import SessionStore

logger = logging.getLogger(__name__)


class Decision(BaseModel):
    allowed: bool
    reason: Optional[str] = None


ALLOW = Decision(allowed=True)


def deny(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)


class ConnectionRejected(Exception):
    """Raised at handshake time; the message is the reason sent to the client."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class PrivilegeAuthority:
    """Admission rules for the controller role and regular participants."""

    def __init__(self, store: SessionStore, max_connections: int = 3,
                 admin_limit: int = 1, regular_limit: int = 2):
        self.store = store
        self.max_connections = max_connections
        self.admin_limit = admin_limit
        self.regular_limit = regular_limit

    def authorize(self, candidate_role: Role, occupancy: Occupancy) -> Decision:
        if occupancy.total >= self.max_connections:
            return deny(f"Server is full (max {self.max_connections} connections)")

        if candidate_role == Role.CONTROLLER:
            if occupancy.controllers >= self.admin_limit:
                return deny("Maximum admin connections reached")
            return ALLOW

        # Regular participants wait until a controller has opened the room
        if not occupancy.controller_has_ever_joined:
            return deny("Waiting for an admin to start the room")
        if occupancy.regulars >= self.regular_limit:
            return deny("Maximum user connections reached")
        return ALLOW

    def admit(self, candidate_role: Role, identity: Optional[str]) -> Decision:
        """Authorize against current occupancy and record a new controller."""
        decision = self.authorize(candidate_role, self.store.occupancy())
        if decision.allowed and candidate_role == Role.CONTROLLER:
            self.store.controller_identity = identity
            self.store.controller_has_ever_joined = True
            logger.info(f"Controller admitted: {identity}")
        elif not decision.allowed:
            logger.info(f"Connection denied for {identity} ({candidate_role.value}): {decision.reason}")
        return decision

    def role_is_full(self, candidate_role: Role) -> bool:
        """Used at login time, before any socket exists."""
        occupancy = self.store.occupancy()
        if candidate_role == Role.CONTROLLER:
            return occupancy.controllers >= self.admin_limit
        return occupancy.regulars >= self.regular_limit
