"""
External collaborators.

The engine decides; these carry decisions out of the process:

- NotificationDispatcher: told about every committed event
- AccountService: receives suspend/ban directives
- HiringService: knows whether a hiring can be disputed, and reverts it
  when its claim is rejected or cancelled

All of them are called AFTER commit. A failure here cannot undo the
committed state; the engine logs it and counts it. Directives are not
retried automatically.

Logging* implementations are the defaults. Recording / InMemory
implementations keep what they were told and back the tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from ..observability import get_logger
from ..schemas import DomainEvent
from .errors import ValidationError

logger = get_logger(__name__)


# ============================================================
# NOTIFICATIONS
# ============================================================

class NotificationDispatcher(ABC):

    @abstractmethod
    def dispatch(self, event: DomainEvent) -> None:
        pass


class LoggingNotificationDispatcher(NotificationDispatcher):

    def dispatch(self, event: DomainEvent) -> None:
        logger.info(
            "Notification dispatched",
            event_type=event.event_type.value,
            claim_id=str(event.claim_id),
            entity_id=event.entity_id,
            sequence=event.sequence_number,
        )


class RecordingNotificationDispatcher(NotificationDispatcher):

    def __init__(self):
        self.events: list[DomainEvent] = []

    def dispatch(self, event: DomainEvent) -> None:
        self.events.append(event)

    @property
    def event_types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


# ============================================================
# ACCOUNTS
# ============================================================

@dataclass(frozen=True)
class AccountDirective:
    """A sanction the account service must enforce platform-wide."""
    user_id: str
    action: str                 # "suspend" | "ban"
    reason: str
    event_id: UUID
    days: Optional[int] = None


class AccountService(ABC):

    @abstractmethod
    def suspend(self, user_id: str, days: int, reason: str, event_id: UUID) -> None:
        pass

    @abstractmethod
    def ban(self, user_id: str, reason: str, event_id: UUID) -> None:
        pass


class LoggingAccountService(AccountService):

    def suspend(self, user_id: str, days: int, reason: str, event_id: UUID) -> None:
        logger.warning(
            "Account suspension directive",
            user_id=user_id,
            days=days,
            reason=reason,
            event_id=str(event_id),
        )

    def ban(self, user_id: str, reason: str, event_id: UUID) -> None:
        logger.warning(
            "Account ban directive",
            user_id=user_id,
            reason=reason,
            event_id=str(event_id),
        )


class InMemoryAccountService(AccountService):

    def __init__(self):
        self.directives: list[AccountDirective] = []

    def suspend(self, user_id: str, days: int, reason: str, event_id: UUID) -> None:
        self.directives.append(AccountDirective(user_id, "suspend", reason, event_id, days))

    def ban(self, user_id: str, reason: str, event_id: UUID) -> None:
        self.directives.append(AccountDirective(user_id, "ban", reason, event_id))

    def is_suspended(self, user_id: str) -> bool:
        return any(d.user_id == user_id and d.action == "suspend" for d in self.directives)

    def is_banned(self, user_id: str) -> bool:
        return any(d.user_id == user_id and d.action == "ban" for d in self.directives)


# ============================================================
# HIRINGS
# ============================================================

# Hiring statuses a claim may be opened from
CLAIMABLE_HIRING_STATUSES = frozenset({
    "in_progress",
    "approved",
    "revision_requested",
    "delivered",
})

IN_CLAIM_STATUS = "in_claim"


class HiringService(ABC):

    @abstractmethod
    def status(self, hiring_id: str) -> Optional[str]:
        """Current status of the hiring, None if unknown (not checked)."""
        pass

    @abstractmethod
    def open_claim(self, hiring_id: str, claim_id: UUID) -> None:
        pass

    @abstractmethod
    def revert(self, hiring_id: str, claim_id: UUID, reason: str) -> None:
        """Return the hiring to its pre-claim state."""
        pass

    def check_claimable(self, hiring_id: str) -> None:
        status = self.status(hiring_id)
        if status is not None and status not in CLAIMABLE_HIRING_STATUSES:
            raise ValidationError(
                f"Hiring {hiring_id} is {status}; claims can only be opened while "
                f"{', '.join(sorted(CLAIMABLE_HIRING_STATUSES))}"
            )


class LoggingHiringService(HiringService):

    def status(self, hiring_id: str) -> Optional[str]:
        return None

    def open_claim(self, hiring_id: str, claim_id: UUID) -> None:
        logger.info("Hiring moved into claim", hiring_id=hiring_id, claim_id=str(claim_id))

    def revert(self, hiring_id: str, claim_id: UUID, reason: str) -> None:
        logger.info(
            "Hiring revert directive",
            hiring_id=hiring_id,
            claim_id=str(claim_id),
            reason=reason,
        )


class InMemoryHiringService(HiringService):
    """Tracks hiring statuses, remembering what each was before its claim."""

    def __init__(self, statuses: Optional[dict[str, str]] = None):
        self.statuses: dict[str, str] = dict(statuses or {})
        self._before_claim: dict[str, str] = {}
        self.reverts: list[tuple[str, UUID, str]] = []

    def status(self, hiring_id: str) -> Optional[str]:
        return self.statuses.get(hiring_id)

    def open_claim(self, hiring_id: str, claim_id: UUID) -> None:
        previous = self.statuses.get(hiring_id)
        if previous is not None:
            self._before_claim[hiring_id] = previous
        self.statuses[hiring_id] = IN_CLAIM_STATUS

    def revert(self, hiring_id: str, claim_id: UUID, reason: str) -> None:
        self.reverts.append((hiring_id, claim_id, reason))
        if hiring_id in self._before_claim:
            self.statuses[hiring_id] = self._before_claim.pop(hiring_id)


def account_directive_args(event: DomainEvent) -> dict:
    """Arguments for AccountService from an ACCOUNT_* event."""
    return {
        "user_id": event.entity_id,
        "reason": event.payload.get("reason", "unspecified"),
        "event_id": event.event_id,
    }
