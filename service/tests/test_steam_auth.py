"""
Tests for the Steam web authentication adapter, against a mocked
IAuthenticationService.
"""

import base64
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from vaultbot.services.probe import CredentialProbe, ProbeStatus
from vaultbot.services.steam_auth import SteamWebAuth, encrypt_password

BASE_URL = "https://steam.test"


@pytest.fixture(scope="module")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def decrypt(private_key, encrypted: str) -> str:
    return private_key.decrypt(base64.b64decode(encrypted), padding.PKCS1v15()).decode("utf-8")


class FakeSteam:
    """Mock transport handler for the two IAuthenticationService calls."""

    def __init__(self, private_key, begin_eresult=1, confirmations=(1,), key_eresult=1, fail=None):
        numbers = private_key.public_key().public_numbers()
        self.private_key = private_key
        self.modulus = format(numbers.n, "x")
        self.exponent = format(numbers.e, "x")
        self.begin_eresult = begin_eresult
        self.confirmations = confirmations
        self.key_eresult = key_eresult
        self.fail = fail
        self.passwords: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail is not None:
            raise self.fail(request)

        if request.url.path.endswith("/GetPasswordRSAPublicKey/v1/"):
            assert request.url.params["account_name"] == "bob"
            return httpx.Response(
                200,
                headers={"x-eresult": str(self.key_eresult)},
                json={"response": {
                    "publickey_mod": self.modulus,
                    "publickey_exp": self.exponent,
                    "timestamp": "4242",
                }},
            )

        if request.url.path.endswith("/BeginAuthSessionViaCredentials/v1/"):
            form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
            assert form["account_name"] == "bob"
            assert form["encryption_timestamp"] == "4242"
            self.passwords.append(decrypt(self.private_key, form["encrypted_password"]))

            if self.begin_eresult != 1:
                return httpx.Response(
                    200,
                    headers={"x-eresult": str(self.begin_eresult), "x-error_message": "rejected"},
                    json={"response": {}},
                )
            return httpx.Response(
                200,
                headers={"x-eresult": "1"},
                json={"response": {
                    "client_id": "1",
                    "allowed_confirmations": [{"confirmation_type": kind} for kind in self.confirmations],
                }},
            )

        return httpx.Response(404)


async def run_probe(steam: FakeSteam, secret="hunter2"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(steam))
    auth = SteamWebAuth(BASE_URL, client=client)
    try:
        return await CredentialProbe(auth, timeout=5).probe("bob", secret)
    finally:
        await auth.close()


class TestSteamWebAuth:

    @pytest.mark.asyncio
    async def test_no_confirmation_is_valid(self, private_key):
        steam = FakeSteam(private_key)
        outcome = await run_probe(steam)

        assert outcome.status is ProbeStatus.VALID
        assert steam.passwords == ["hunter2"]

    @pytest.mark.asyncio
    async def test_guard_confirmation_is_challenge(self, private_key):
        outcome = await run_probe(FakeSteam(private_key, confirmations=(3,)))
        assert outcome.status is ProbeStatus.CHALLENGE_REQUIRED

    @pytest.mark.asyncio
    async def test_invalid_password(self, private_key):
        outcome = await run_probe(FakeSteam(private_key, begin_eresult=5))
        assert outcome.status is ProbeStatus.INVALID_CREDENTIAL

    @pytest.mark.asyncio
    async def test_rate_limited(self, private_key):
        outcome = await run_probe(FakeSteam(private_key, begin_eresult=50))
        assert outcome.status is ProbeStatus.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_unmapped_eresult_carries_message(self, private_key):
        outcome = await run_probe(FakeSteam(private_key, begin_eresult=20))

        assert outcome.status is ProbeStatus.UNKNOWN_ERROR
        assert outcome.detail == "rejected"

    @pytest.mark.asyncio
    async def test_key_lookup_failure(self, private_key):
        outcome = await run_probe(FakeSteam(private_key, key_eresult=5))
        assert outcome.status is ProbeStatus.INVALID_CREDENTIAL

    @pytest.mark.asyncio
    async def test_network_error_is_unknown(self, private_key):
        def refuse(request):
            return httpx.ConnectError("connection refused", request=request)

        outcome = await run_probe(FakeSteam(private_key, fail=refuse))

        assert outcome.status is ProbeStatus.UNKNOWN_ERROR
        assert "connection refused" in outcome.detail

    @pytest.mark.asyncio
    async def test_session_close_is_idempotent(self, private_key):
        client = httpx.AsyncClient(transport=httpx.MockTransport(FakeSteam(private_key)))
        auth = SteamWebAuth(BASE_URL, client=client)
        session = await auth.open_session("bob", "pw")

        await session.close()
        await session.close()
        await auth.close()


class TestEncryptPassword:

    def test_round_trip_with_private_key(self, private_key):
        numbers = private_key.public_key().public_numbers()
        encrypted = encrypt_password("pässword", format(numbers.n, "x"), format(numbers.e, "x"))
        assert decrypt(private_key, encrypted) == "pässword"
