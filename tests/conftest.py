"""
Shared fixtures.

FakeMicrosoft stands in for both the identity platform token endpoint and
Microsoft Graph behind a single httpx.MockTransport. FakeCredentialStore and
FakeUserStorage replace the psycopg2-backed storage classes.
"""

import os
import sys
from datetime import datetime, timezone
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth.credentials import MicrosoftCredentialService
from auth.crypto import TokenCipher
from auth.graph import MicrosoftGraphClient
from auth.microsoft import MicrosoftAuthService, MicrosoftOAuthSettings
from auth.session import SessionTokenIssuer, SessionTokenSettings
from db.storage.credentials import CredentialRecord

TEST_ENCRYPTION_SECRET = "test-token-encryption-secret"
TEST_REDIRECT_URI = "https://app.example.com/ms-graph/callback"
TOKEN_HOST = "login.microsoftonline.com"
GRAPH_HOST = "graph.microsoft.com"


def make_id_token(email: str = "alice@contoso.com", **claims) -> str:
    """ID token shaped like the provider's; only its claims are ever read."""
    payload = {"preferred_username": email, "oid": "00000000-0000-0000-0000-000000000001", **claims}
    return jwt.encode(payload, "provider-signing-key-not-checked-by-the-service", algorithm="HS256")


class FakeCredentialStore:
    """In-memory stand-in for MicrosoftCredentialStorage."""

    def __init__(self):
        self.records: dict = {}
        self.upserts = 0
        self.gets = 0

    async def upsert(self, principal, encrypted_access, encrypted_refresh, encrypted_id):
        if not (encrypted_access and encrypted_refresh and encrypted_id):
            raise ValueError("All three encrypted tokens are required")
        now = datetime.now(timezone.utc)
        existing = self.records.get(principal)
        record = CredentialRecord(
            principal=principal,
            access_token=encrypted_access,
            refresh_token=encrypted_refresh,
            id_token=encrypted_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.records[principal] = record
        self.upserts += 1
        return record

    async def get(self, principal):
        self.gets += 1
        return self.records.get(principal)

    async def delete(self, principal):
        return self.records.pop(principal, None) is not None


class FakeUserStorage:
    """In-memory stand-in for UserStorage."""

    def __init__(self, users=None):
        self.users = {str(u["id"]): dict(u) for u in (users or [])}

    async def get_user_by_id(self, user_id):
        user = self.users.get(str(user_id))
        return dict(user) if user else None


class FakeMicrosoft:
    """
    Scripted identity provider and Graph.

    Token endpoint: pops the next scripted (status, body) response, or issues
    a fresh rotating token set when nothing is scripted.
    Graph: 2xx when the bearer token is in ``valid_access_tokens``, 401
    otherwise. PUT uploads echo back an item with a webUrl.
    """

    def __init__(self):
        self.token_requests: list[dict] = []
        self.graph_requests: list[httpx.Request] = []
        self.token_responses: list[tuple[int, dict]] = []
        self.valid_access_tokens: set[str] = set()
        self.graph_failures: list[int] = []
        self.raise_on_token: Exception | None = None
        self.raise_on_graph: Exception | None = None
        self._issued = 0

    # ------------------------------------------------------------------
    def issue_tokens(self, *, rotate_refresh: bool = True, include_id: bool = True) -> dict:
        self._issued += 1
        access = f"access-{self._issued}"
        self.valid_access_tokens.add(access)
        body = {
            "token_type": "Bearer",
            "scope": "openid profile email offline_access User.Read",
            "expires_in": 3599,
            "ext_expires_in": 3599,
            "access_token": access,
        }
        if rotate_refresh:
            body["refresh_token"] = f"refresh-{self._issued}"
        if include_id:
            body["id_token"] = make_id_token()
        return body

    def script_token_response(self, status_code: int, body: dict) -> None:
        self.token_responses.append((status_code, body))

    @property
    def graph_calls(self) -> int:
        return len(self.graph_requests)

    @property
    def refresh_calls(self) -> int:
        return sum(1 for form in self.token_requests if form.get("grant_type") == "refresh_token")

    # ------------------------------------------------------------------
    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == TOKEN_HOST:
            return self._token(request)
        if request.url.host == GRAPH_HOST:
            return self._graph(request)
        return httpx.Response(404, json={"error": "unknown host"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode("utf-8")))
        self.token_requests.append(form)
        if self.raise_on_token is not None:
            raise self.raise_on_token
        if self.token_responses:
            status_code, body = self.token_responses.pop(0)
            return httpx.Response(status_code, json=body)
        return httpx.Response(200, json=self.issue_tokens())

    def _graph(self, request: httpx.Request) -> httpx.Response:
        self.graph_requests.append(request)
        if self.raise_on_graph is not None:
            raise self.raise_on_graph
        if self.graph_failures:
            return httpx.Response(self.graph_failures.pop(0), json={"error": {"code": "scripted"}})

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in self.valid_access_tokens:
            return httpx.Response(
                401, json={"error": {"code": "InvalidAuthenticationToken", "message": "expired"}}
            )

        if request.method == "PUT":
            name = request.url.path.rsplit("/", 2)[-2].rstrip(":")
            return httpx.Response(
                201,
                json={"id": f"item-{len(self.graph_requests)}", "name": name, "webUrl": f"https://onedrive.example/{name}"},
            )
        if request.url.path.endswith("/me"):
            return httpx.Response(200, json={"id": "ms-user-1", "mail": "alice@contoso.com"})
        return httpx.Response(200, json={"value": [{"id": "item-1", "name": "Budget.xlsx"}]})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def cipher():
    return TokenCipher(TEST_ENCRYPTION_SECRET)


@pytest.fixture
def oauth_settings():
    return MicrosoftOAuthSettings(
        client_id="client-id",
        client_secret="client-secret",
        tenant_id="common",
        redirect_uri=TEST_REDIRECT_URI,
        timeout_seconds=2.0,
    )


@pytest.fixture
def microsoft():
    return FakeMicrosoft()


@pytest.fixture
def store():
    return FakeCredentialStore()


@pytest.fixture
def auth_service(oauth_settings, microsoft):
    return MicrosoftAuthService(oauth_settings, transport=microsoft.transport())


@pytest.fixture
def credential_service(store, cipher, auth_service):
    return MicrosoftCredentialService(store, cipher=cipher, auth_service=auth_service)


@pytest.fixture
def graph_client(credential_service, microsoft):
    return MicrosoftGraphClient(credential_service, transport=microsoft.transport())


@pytest.fixture
def users():
    return FakeUserStorage(
        [
            {"id": "u1", "email": "alice@contoso.com", "role": "admin"},
            {"id": "u2", "email": "bob@contoso.com", "role": "member"},
        ]
    )


@pytest.fixture
def session_settings():
    return SessionTokenSettings(
        access_secret="access-secret-for-tests-0123456789abcdef",
        refresh_secret="refresh-secret-for-tests-0123456789abcdef",
    )


@pytest.fixture
def session_issuer(session_settings, users):
    return SessionTokenIssuer(session_settings, users=users)
