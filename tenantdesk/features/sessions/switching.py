"""
Active organization switch protocol.

The session provider is the source of truth for the active organization, but
its read path may lag its write path. A switch therefore issues the mutation,
then polls the session until it reflects the new organization:

    idle -> switching -> confirmed | timed_out | rejected

Only one switch may be in flight per switcher; a second call while switching
returns immediately with an ``in_progress`` result and has no side effects.
"""
import asyncio
import enum
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Protocol

from tenantdesk.core import config
from tenantdesk.features.permissions.resolver import MembershipRecord
from tenantdesk.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    """What the session provider reports for the current login session."""
    user_id: str
    active_organization_id: Optional[str] = None


class SessionProvider(Protocol):
    async def get_session(self) -> Optional[SessionSnapshot]:
        ...

    async def set_active_organization(self, organization_id: Optional[str]) -> None:
        """Raise SessionMutationError when the provider rejects the change."""
        ...


class SessionMutationError(Exception):
    """The session provider refused to change the active organization."""


class OrganizationSwitchRejected(Exception):
    def __init__(self, organization_id: Optional[str], reason: str = ""):
        self.organization_id = organization_id
        self.reason = reason
        super().__init__(f"Switch to organization {organization_id} rejected: {reason}")


class SwitchState(str, enum.Enum):
    IDLE = "idle"
    SWITCHING = "switching"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"


class SwitchOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    # mutation accepted but the read path never caught up within budget
    TIMED_OUT = "timed_out"
    ALREADY_ACTIVE = "already_active"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class SwitchResult:
    outcome: SwitchOutcome
    organization_id: Optional[str]
    polls: int = 0

    @property
    def ok(self) -> bool:
        """False only for a call rejected because another switch is running."""
        return self.outcome is not SwitchOutcome.IN_PROGRESS


SessionCallback = Callable[[Optional[SessionSnapshot]], Awaitable[None]]


class ActiveOrganizationSwitcher:
    """
    Switch the active organization of one login session.

    Usage:
        switcher = ActiveOrganizationSwitcher(provider, on_session=context.apply_session)
        result = await switcher.switch(org_id)

    Args:
        provider: SessionProvider for the session being switched
        on_session: Awaited with the session to apply after a switch settles
        attempts: Confirmation polls after a successful mutation
        delay: Fixed pause between polls, in seconds
        deadline: Overall budget for the confirmation phase, in seconds
        sleep / clock: Injectable for deterministic tests
    """

    def __init__(
        self,
        provider: SessionProvider,
        *,
        on_session: Optional[SessionCallback] = None,
        attempts: Optional[int] = None,
        delay: Optional[float] = None,
        deadline: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.on_session = on_session
        self.attempts = max(1, config.SWITCH_RETRY_ATTEMPTS if attempts is None else attempts)
        self.delay = config.SWITCH_RETRY_DELAY if delay is None else delay
        self.deadline = config.SWITCH_DEADLINE if deadline is None else deadline
        self._sleep = sleep
        self._clock = clock

        self.state = SwitchState.IDLE
        self.session: Optional[SessionSnapshot] = None
        # Local pointer; ahead of the confirmed value while a switch is in flight
        self.active_organization_id: Optional[str] = None
        self.confirmed_organization_id: Optional[str] = None
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def observe(self, snapshot: Optional[SessionSnapshot]) -> None:
        """Adopt a session fetched outside of a switch (login, refresh)."""
        self.session = snapshot
        organization_id = snapshot.active_organization_id if snapshot else None
        self.confirmed_organization_id = organization_id
        if not self._in_flight:
            self.active_organization_id = organization_id

    async def switch(self, organization_id: Optional[str]) -> SwitchResult:
        # Both guards run before the first await.
        if self._in_flight:
            log.debug("Switch to %s ignored: another switch is in flight", organization_id)
            return SwitchResult(SwitchOutcome.IN_PROGRESS, organization_id)
        if organization_id == self.confirmed_organization_id:
            return SwitchResult(SwitchOutcome.ALREADY_ACTIVE, organization_id)

        self._in_flight = True
        previous = self.confirmed_organization_id
        self.state = SwitchState.SWITCHING
        self.active_organization_id = organization_id
        try:
            try:
                await self.provider.set_active_organization(organization_id)
            except Exception as exc:
                self.active_organization_id = previous
                self.state = SwitchState.REJECTED
                log.warning("Switch to organization %s rejected: %s", organization_id, exc)
                raise OrganizationSwitchRejected(organization_id, str(exc)) from exc

            deadline_at = self._clock() + self.deadline
            confirmed, last_seen, polls = await self._confirm(organization_id, deadline_at)
            if confirmed is not None:
                self.state = SwitchState.CONFIRMED
                await self._apply(confirmed)
                return SwitchResult(SwitchOutcome.CONFIRMED, organization_id, polls)

            self.state = SwitchState.TIMED_OUT
            log.info(
                "Switch to organization %s not observed after %d polls; applying latest session",
                organization_id, polls,
            )
            await self._apply(await self._final_session(organization_id, deadline_at, last_seen))
            return SwitchResult(SwitchOutcome.TIMED_OUT, organization_id, polls)
        finally:
            if self.state is SwitchState.SWITCHING:
                # cancelled mid-flight
                self.active_organization_id = previous
                self.state = SwitchState.IDLE
            self._in_flight = False

    async def _confirm(
        self, organization_id: Optional[str], deadline_at: float
    ) -> tuple[Optional[SessionSnapshot], Optional[SessionSnapshot], int]:
        """Return (confirming snapshot, last snapshot seen, polls made)."""
        polls = 0
        last_seen = None
        for attempt in range(self.attempts):
            if attempt:
                remaining = deadline_at - self._clock()
                if remaining <= 0:
                    break
                await self._sleep(min(self.delay, remaining))
            remaining = deadline_at - self._clock()
            if remaining <= 0:
                break

            polls += 1
            try:
                snapshot = await asyncio.wait_for(self.provider.get_session(), timeout=remaining)
            except asyncio.TimeoutError:
                log.warning("Session poll %d hit the switch deadline", polls)
                break
            except Exception:
                log.warning("Session poll %d failed", polls, exc_info=True)
                continue

            if snapshot is not None:
                last_seen = snapshot
                if snapshot.active_organization_id == organization_id:
                    return snapshot, last_seen, polls
        return None, last_seen, polls

    async def _final_session(
        self,
        organization_id: Optional[str],
        deadline_at: float,
        last_seen: Optional[SessionSnapshot],
    ) -> Optional[SessionSnapshot]:
        """
        One unconditional fetch; falls back to the last observed session, then
        to the optimistic value when nothing could be read.
        """
        remaining = deadline_at - self._clock()
        if remaining > 0:
            try:
                return await asyncio.wait_for(self.provider.get_session(), timeout=remaining)
            except asyncio.TimeoutError:
                log.warning("Final session fetch hit the switch deadline")
            except Exception:
                log.warning("Final session fetch failed", exc_info=True)
        if last_seen is not None:
            return last_seen
        if self.session is not None:
            return replace(self.session, active_organization_id=organization_id)
        return None

    async def _apply(self, snapshot: Optional[SessionSnapshot]) -> None:
        if snapshot is None and self.session is not None:
            log.info("Session for user %s ended during switch", self.session.user_id)
        self.session = snapshot
        organization_id = snapshot.active_organization_id if snapshot else None
        self.confirmed_organization_id = organization_id
        self.active_organization_id = organization_id
        if self.on_session is not None:
            await self.on_session(snapshot)


MembershipLister = Callable[[str], Awaitable[list[MembershipRecord]]]


class AutoOrganizationSelector:
    """
    Pick the first organization for an identity that has none active.

    Attempted at most once per identity; the attempt flag resets when the
    identity changes or the session gains an active organization.
    """

    def __init__(self, switcher: ActiveOrganizationSwitcher, list_memberships: MembershipLister):
        self.switcher = switcher
        self.list_memberships = list_memberships
        self._identity_id: Optional[str] = None
        self._attempted = False

    @property
    def attempted(self) -> bool:
        return self._attempted

    async def maybe_select(self, snapshot: Optional[SessionSnapshot]) -> Optional[SwitchResult]:
        if snapshot is None:
            self._identity_id = None
            self._attempted = False
            return None
        if snapshot.user_id != self._identity_id:
            self._identity_id = snapshot.user_id
            self._attempted = False
        if snapshot.active_organization_id:
            self._attempted = False
            return None
        if self._attempted:
            return None

        self._attempted = True
        try:
            memberships = await self.list_memberships(snapshot.user_id)
        except Exception:
            log.warning("Could not list memberships for %s; skipping auto-select", snapshot.user_id, exc_info=True)
            return None
        if not memberships:
            return None

        organization_id = memberships[0].organization_id
        log.info("Auto-selecting organization %s for user %s", organization_id, snapshot.user_id)
        try:
            return await self.switcher.switch(organization_id)
        except OrganizationSwitchRejected as exc:
            log.warning("Auto-select rejected: %s", exc.reason)
            return None
