from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from shopping_tracker.auth import AuthClient, AuthSession, BiometricGate, CredentialVault
from shopping_tracker.errors import AuthCancelled, AuthError, ValidationError
from shopping_tracker.session import ERROR, SUCCESS, Notifier


class _Response:
    def __init__(self, status_code: int, body: Optional[Dict[str, Any]] = None, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self.content = json.dumps(body).encode("utf-8") if body is not None else b""
        self._body = body

    def json(self) -> Any:
        return self._body


class _StubSession:
    def __init__(self, response: _Response) -> None:
        self.headers: Dict[str, str] = {}
        self.response = response
        self.posts: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.posts.append({"url": url, **kwargs})
        return self.response


class _Verifier:
    def __init__(self, error: Optional[Exception] = None, verified: bool = True) -> None:
        self.error = error
        self.verified = verified
        self.verified_ids: List[str] = []

    def register(self, account: str) -> str:
        if self.error is not None:
            raise self.error
        return f"cred-{account}"

    def verify(self, credential_id: str) -> bool:
        self.verified_ids.append(credential_id)
        if self.error is not None:
            raise self.error
        return self.verified


class _Client:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        self.calls.append((email, password))
        return AuthSession(user_id="u-1", access_token="jwt", email=email)


SIGNED_IN = {"access_token": "jwt", "refresh_token": "r", "user": {"id": "u-1", "email": "ana@example.com"}}


def test_password_sign_in_hits_token_endpoint() -> None:
    stub = _StubSession(_Response(200, SIGNED_IN))
    client = AuthClient("https://db.example.test/", "anon", session=stub)

    session = client.sign_in_with_password(" ana@example.com ", "segredo")

    assert session == AuthSession(user_id="u-1", access_token="jwt", refresh_token="r", email="ana@example.com")
    sent = stub.posts[0]
    assert sent["url"] == "https://db.example.test/auth/v1/token"
    assert sent["params"] == {"grant_type": "password"}
    assert sent["json"] == {"email": "ana@example.com", "password": "segredo"}
    assert stub.headers["apikey"] == "anon"


def test_bad_credentials_map_to_auth_error() -> None:
    client = AuthClient("https://db.example.test", "anon", session=_StubSession(_Response(400, {"error_description": "Invalid login"})))
    with pytest.raises(AuthError, match="Email ou senha incorretos"):
        client.sign_in_with_password("ana@example.com", "errada")


def test_empty_fields_and_short_passwords_rejected_locally() -> None:
    stub = _StubSession(_Response(200, SIGNED_IN))
    client = AuthClient("https://db.example.test", "anon", session=stub)
    with pytest.raises(ValidationError):
        client.sign_in_with_password("", "x")
    with pytest.raises(ValidationError):
        client.sign_up("ana@example.com", "123")
    assert stub.posts == []


def test_vault_is_owner_only(tmp_path: Path) -> None:
    vault = CredentialVault(str(tmp_path / "auth" / "cred.json"))
    vault.save({"id": "c", "email": "e", "password": "p"})
    mode = stat.S_IMODE(os.stat(vault.path).st_mode)
    assert mode == 0o600
    assert vault.load() == {"id": "c", "email": "e", "password": "p"}
    assert vault.clear() is True
    assert vault.load() is None


def test_enroll_then_unlock_releases_credential(tmp_path: Path) -> None:
    notifier = Notifier()
    verifier = _Verifier()
    gate = BiometricGate(verifier, CredentialVault(str(tmp_path / "cred.json")), notifier)

    assert gate.enroll("ana@example.com", "segredo") is True
    assert gate.is_enrolled
    assert gate.unlock() == {"email": "ana@example.com", "password": "segredo"}
    assert verifier.verified_ids == ["cred-ana@example.com"]
    assert [n.level for n in notifier.drain()] == [SUCCESS]


def test_unlock_still_requires_backend_sign_in(tmp_path: Path) -> None:
    gate = BiometricGate(_Verifier(), CredentialVault(str(tmp_path / "cred.json")), Notifier())
    gate.enroll("ana@example.com", "segredo")
    client = _Client()

    session = gate.sign_in(client)

    assert session.user_id == "u-1"
    assert client.calls == [("ana@example.com", "segredo")]


@pytest.mark.parametrize(
    "error, message",
    [
        (AuthCancelled("NotAllowedError"), "Autenticação cancelada"),
        (AuthError("boom"), "Falha na autenticação"),
    ],
)
def test_unlock_failures_map_to_messages(tmp_path: Path, error, message) -> None:
    vault = CredentialVault(str(tmp_path / "cred.json"))
    BiometricGate(_Verifier(), vault, Notifier()).enroll("ana@example.com", "segredo")
    notifier = Notifier()
    gate = BiometricGate(_Verifier(error=error), vault, notifier)

    assert gate.unlock() is None
    notes = notifier.drain()
    assert [(n.level, n.message) for n in notes] == [(ERROR, message)]


def test_enroll_cancelled_stores_nothing(tmp_path: Path) -> None:
    notifier = Notifier()
    gate = BiometricGate(_Verifier(error=AuthCancelled("x")), CredentialVault(str(tmp_path / "cred.json")), notifier)
    assert gate.enroll("ana@example.com", "segredo") is False
    assert not gate.is_enrolled
    assert [n.message for n in notifier.drain()] == ["Autenticação cancelada"]


def test_forget_removes_blob(tmp_path: Path) -> None:
    gate = BiometricGate(_Verifier(), CredentialVault(str(tmp_path / "cred.json")), Notifier())
    gate.enroll("ana@example.com", "segredo")
    assert gate.forget() is True
    assert gate.unlock() is None
