"""
Steam web authentication adapter.

Implements the AuthPlatform contract used by the probe engine on top of
Steam's IAuthenticationService HTTP API:

1. GetPasswordRSAPublicKey   - RSA key for the account
2. encrypt password          - PKCS#1 v1.5, base64
3. BeginAuthSessionViaCredentials
   - x-eresult != 1                  -> error signal (EResult code)
   - no confirmation needed          -> logged-on signal
   - email / mobile / device confirm -> challenge signal

The HTTP exchange runs in a background task started by open_session();
the probe engine waits on the signals and closes the session.
"""

import asyncio
import base64
import logging
from typing import Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from vaultbot.services.probe import AuthError

logger = logging.getLogger(__name__)

STEAM_API_URL = "https://api.steampowered.com"

ERESULT_OK = 1
ERESULT_FAIL = 2

# k_EAuthSessionGuardType_None
GUARD_TYPE_NONE = 1

ERESULT_NAMES = {
    2: "Fail",
    3: "NoConnection",
    5: "InvalidPassword",
    18: "AccountNotFound",
    50: "LimitExceeded",
    63: "AccountLogonDenied",
    65: "InvalidLoginAuthCode",
    84: "RateLimitExceeded",
    85: "AccountLoginDeniedNeedTwoFactor",
    88: "TwoFactorCodeMismatch",
}


class SteamAuthError(Exception):
    """Steam answered with a non-OK EResult."""

    def __init__(self, code: int, message: str = ""):
        self.code = code
        self.message = message or ERESULT_NAMES.get(code, f"EResult {code}")
        super().__init__(self.message)


def encrypt_password(secret: str, modulus_hex: str, exponent_hex: str) -> str:
    """Encrypt a password with Steam's RSA public key (PKCS#1 v1.5, base64)."""
    public_key = rsa.RSAPublicNumbers(int(exponent_hex, 16), int(modulus_hex, 16)).public_key()
    encrypted = public_key.encrypt(secret.encode("utf-8"), padding.PKCS1v15())
    return base64.b64encode(encrypted).decode("ascii")


def _eresult(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("x-eresult", ERESULT_OK))
    except ValueError:
        return ERESULT_FAIL


class SteamAuthSession:
    """One login attempt. Signals are futures resolved by the background task."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, login: str, secret: str):
        loop = asyncio.get_running_loop()
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.login = login
        self._secret = secret
        self._logged_on: asyncio.Future = loop.create_future()
        self._challenge: asyncio.Future = loop.create_future()
        self._error: asyncio.Future = loop.create_future()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def wait_logged_on(self) -> None:
        await asyncio.shield(self._logged_on)

    async def wait_challenge(self) -> None:
        await asyncio.shield(self._challenge)

    async def wait_error(self) -> AuthError:
        return await asyncio.shield(self._error)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        for future in (self._logged_on, self._challenge, self._error):
            if not future.done():
                future.cancel()

    async def _run(self) -> None:
        try:
            key = await self._fetch_rsa_key()
            encrypted = encrypt_password(self._secret, key["publickey_mod"], key["publickey_exp"])
            confirmations = await self._begin_auth_session(encrypted, key["timestamp"])
        except SteamAuthError as e:
            self._resolve(self._error, AuthError(e.code, e.message))
            return
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning(f"Steam auth request failed for {self.login}: {e}")
            self._resolve(self._error, AuthError(ERESULT_FAIL, str(e) or type(e).__name__))
            return

        if all(guard == GUARD_TYPE_NONE for guard in confirmations):
            self._resolve(self._logged_on, None)
        else:
            logger.debug(f"Steam requires confirmation {confirmations} for {self.login}")
            self._resolve(self._challenge, None)

    async def _fetch_rsa_key(self) -> dict:
        response = await self.client.get(
            f"{self.base_url}/IAuthenticationService/GetPasswordRSAPublicKey/v1/",
            params={"account_name": self.login}
        )
        response.raise_for_status()
        code = _eresult(response)
        key = response.json().get("response", {})
        if code != ERESULT_OK or "publickey_mod" not in key:
            raise SteamAuthError(code if code != ERESULT_OK else ERESULT_FAIL)
        return key

    async def _begin_auth_session(self, encrypted_password: str, timestamp: str) -> list[int]:
        response = await self.client.post(
            f"{self.base_url}/IAuthenticationService/BeginAuthSessionViaCredentials/v1/",
            data={
                "account_name": self.login,
                "encrypted_password": encrypted_password,
                "encryption_timestamp": timestamp,
                "remember_login": "false",
                "persistence": "0",
                "website_id": "Community",
                "device_friendly_name": "vaultbot",
            }
        )
        response.raise_for_status()
        code = _eresult(response)
        if code != ERESULT_OK:
            raise SteamAuthError(code, response.headers.get("x-error_message", ""))
        body = response.json().get("response", {})
        return [item.get("confirmation_type", GUARD_TYPE_NONE) for item in body.get("allowed_confirmations", [])]

    @staticmethod
    def _resolve(future: asyncio.Future, value) -> None:
        if not future.done():
            future.set_result(value)


class SteamWebAuth:
    """AuthPlatform backed by the Steam web API."""

    def __init__(self, base_url: str = STEAM_API_URL, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(timeout=15.0)

    async def open_session(self, login: str, secret: str) -> SteamAuthSession:
        session = SteamAuthSession(self.client, self.base_url, login, secret)
        session.start()
        return session

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
