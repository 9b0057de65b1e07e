"""
Credential Probe Engine.

One probe = one login attempt against the authentication platform,
resolved to exactly one ProbeOutcome:

    VALID               logged on outright
    CHALLENGE_REQUIRED  credentials accepted, but Steam Guard / 2FA is required
    INVALID_CREDENTIAL  platform rejected the password
    RATE_LIMITED        platform rejected our traffic
    TIMEOUT             nothing definitive within the deadline
    UNKNOWN_ERROR       any other rejection (detail carries the reason)

Race participants: logged-on signal, challenge signal, error signal and the
deadline. The first to complete decides; everything after is a no-op.
The session is closed exactly once, in every branch.

Usage:
    probe = CredentialProbe(SteamWebAuth())
    outcome = await probe.probe("login", "password")
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 10.0

# Password sent by identifier-existence probes
DUMMY_SECRET = "dummy_password_for_check"


class ProbeStatus(str, Enum):
    VALID = "valid"
    CHALLENGE_REQUIRED = "challenge_required"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNKNOWN_ERROR = "unknown_error"


# Steam EResult -> outcome
ERROR_CODE_TABLE: dict[int, ProbeStatus] = {
    5: ProbeStatus.INVALID_CREDENTIAL,    # InvalidPassword
    50: ProbeStatus.RATE_LIMITED,         # too much traffic from this origin
    84: ProbeStatus.CHALLENGE_REQUIRED,   # Steam Guard
    63: ProbeStatus.CHALLENGE_REQUIRED,   # AccountLogonDenied (email code)
    85: ProbeStatus.CHALLENGE_REQUIRED,   # AccountLoginDeniedNeedTwoFactor
}

STATUS_MESSAGES = {
    ProbeStatus.VALID: "✅ Account is valid",
    ProbeStatus.CHALLENGE_REQUIRED: "⚠️ Account is protected by Steam Guard",
    ProbeStatus.INVALID_CREDENTIAL: "❌ Wrong password",
    ProbeStatus.RATE_LIMITED: "❌ Too much traffic, try again later",
    ProbeStatus.TIMEOUT: "❌ Timed out waiting for Steam",
}


@dataclass(frozen=True)
class AuthError:
    """Error signal from the platform: reason code plus readable message."""
    code: int
    message: str = ""


@dataclass(frozen=True)
class ProbeOutcome:
    status: ProbeStatus
    login: str = ""
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ProbeStatus.VALID

    @property
    def message(self) -> str:
        if self.status is ProbeStatus.UNKNOWN_ERROR:
            return f"❌ Error: {self.detail or 'unknown error'}"
        return STATUS_MESSAGES[self.status]


class AuthSession(Protocol):
    async def wait_logged_on(self) -> None: ...

    async def wait_challenge(self) -> None: ...

    async def wait_error(self) -> AuthError: ...

    async def close(self) -> None: ...


class AuthPlatform(Protocol):
    async def open_session(self, login: str, secret: str) -> AuthSession: ...


def outcome_for_error(login: str, error: AuthError) -> ProbeOutcome:
    """Map a platform error code through ERROR_CODE_TABLE."""
    status = ERROR_CODE_TABLE.get(error.code)
    if status is None:
        detail = error.message or f"code {error.code}"
        return ProbeOutcome(ProbeStatus.UNKNOWN_ERROR, login, detail)
    return ProbeOutcome(status, login)


class _Resolution:
    """First-wins holder: settle() only takes effect once."""

    def __init__(self):
        self.decided = False
        self.outcome: Optional[ProbeOutcome] = None

    def settle(self, outcome: ProbeOutcome) -> bool:
        if self.decided:
            return False
        self.decided = True
        self.outcome = outcome
        return True


class CredentialProbe:
    """Runs bounded login attempts against an AuthPlatform."""

    def __init__(self, platform: AuthPlatform, timeout: float = PROBE_TIMEOUT_SECONDS):
        self.platform = platform
        self.timeout = timeout

    async def probe(
        self,
        login: str,
        secret: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> ProbeOutcome:
        """
        Run one probe attempt.

        Args:
            login: Account name
            secret: Password; None for an identifier-existence probe
            timeout: Seconds until TIMEOUT wins (defaults to self.timeout)

        Returns:
            Exactly one ProbeOutcome. Never raises for platform failures.
        """
        loop = asyncio.get_running_loop()
        timeout = self.timeout if timeout is None else timeout
        deadline = loop.time() + timeout
        resolution = _Resolution()

        try:
            session = await asyncio.wait_for(
                self.platform.open_session(login, secret if secret is not None else DUMMY_SECRET),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            await _sleep_until(deadline)
            return ProbeOutcome(ProbeStatus.TIMEOUT, login)
        except Exception as e:
            logger.warning(f"Probe for {login}: failed to open session: {e}")
            return ProbeOutcome(ProbeStatus.UNKNOWN_ERROR, login, str(e))

        try:
            await self._race(session, login, deadline, resolution)
        finally:
            await _close_session(session, login)

        logger.info(f"Probe for {login}: {resolution.outcome.status.value}")
        return resolution.outcome

    async def _race(self, session: AuthSession, login: str, deadline: float, resolution: _Resolution) -> None:
        loop = asyncio.get_running_loop()

        # Settle order for signals that complete in the same tick
        success = asyncio.ensure_future(session.wait_logged_on())
        challenge = asyncio.ensure_future(session.wait_challenge())
        error = asyncio.ensure_future(session.wait_error())
        signals = [success, challenge, error]

        try:
            done: set = set()
            while not done:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, _ = await asyncio.wait(
                    signals, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )

            for task in signals:
                if task not in done or task.cancelled():
                    continue
                if task.exception() is not None:
                    resolution.settle(ProbeOutcome(
                        ProbeStatus.UNKNOWN_ERROR, login, str(task.exception())
                    ))
                elif task is success:
                    resolution.settle(ProbeOutcome(ProbeStatus.VALID, login))
                elif task is challenge:
                    resolution.settle(ProbeOutcome(ProbeStatus.CHALLENGE_REQUIRED, login))
                else:
                    resolution.settle(outcome_for_error(login, task.result()))

            resolution.settle(ProbeOutcome(ProbeStatus.TIMEOUT, login))
        finally:
            for task in signals:
                task.cancel()
            await asyncio.gather(*signals, return_exceptions=True)


async def _sleep_until(deadline: float) -> None:
    loop = asyncio.get_running_loop()
    remaining = deadline - loop.time()
    while remaining > 0:
        await asyncio.sleep(remaining)
        remaining = deadline - loop.time()


async def _close_session(session: AuthSession, login: str) -> None:
    try:
        await session.close()
    except Exception as e:
        logger.warning(f"Probe for {login}: error closing session: {e}")


class LoginCheck(str, Enum):
    EXISTS = "exists"
    MISSING = "missing"
    INCONCLUSIVE = "inconclusive"


def interpret_login_probe(outcome: ProbeOutcome) -> LoginCheck:
    """
    Read an identifier-existence probe (dummy secret).

    A bad-password rejection means the login does not exist; timeouts and
    rate limits say nothing either way; any other answer means it exists.
    """
    if outcome.status is ProbeStatus.INVALID_CREDENTIAL:
        return LoginCheck.MISSING
    if outcome.status in (ProbeStatus.TIMEOUT, ProbeStatus.RATE_LIMITED):
        return LoginCheck.INCONCLUSIVE
    return LoginCheck.EXISTS
