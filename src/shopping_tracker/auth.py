from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests

from .errors import AuthCancelled, AuthError, ValidationError
from .logging import get_logger
from .paths import find_project_root, state_dir
from .session import Notifier

LOG = get_logger("auth")

MIN_PASSWORD_LENGTH = 6
VAULT_FILENAME = "biometric_credential.json"


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    access_token: str
    refresh_token: Optional[str] = None
    email: Optional[str] = None


def _require_credentials(email: str, password: str) -> None:
    if not (email or "").strip() or not password:
        raise ValidationError("Preencha todos os campos")


class AuthClient:
    """Email/password sign-in against the hosted backend's auth endpoints."""

    def __init__(self, base_url: str, api_key: str, *, timeout: int = 30, session: Optional[requests.Session] = None) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = int(timeout)
        self.s = session or requests.Session()
        self.s.headers.update({"apikey": api_key, "Content-Type": "application/json"})

    def _post(self, path: str, payload: Dict[str, Any], *, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        url = f"{self.base}/auth/v1/{path}"
        try:
            r = self.s.post(url, json=payload, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            LOG.error(f"Auth request to {path} failed: {exc}")
            raise AuthError(f"Erro ao fazer login: {exc}") from exc
        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = {}
        if r.status_code >= 400:
            detail = body.get("error_description") or body.get("msg") or body.get("message") or r.reason
            LOG.error(f"Auth {path} -> HTTP {r.status_code}: {detail}")
            if r.status_code in (400, 401):
                raise AuthError("Email ou senha incorretos")
            raise AuthError(f"Erro ao fazer login: {detail}")
        return body

    @staticmethod
    def _session_from(body: Dict[str, Any], email: str) -> AuthSession:
        user = body.get("user") or {}
        token = body.get("access_token")
        if not token or not user.get("id"):
            raise AuthError("Resposta de autenticação inválida")
        return AuthSession(
            user_id=str(user["id"]),
            access_token=token,
            refresh_token=body.get("refresh_token"),
            email=user.get("email") or email,
        )

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        _require_credentials(email, password)
        body = self._post("token", {"email": email.strip(), "password": password}, params={"grant_type": "password"})
        session = self._session_from(body, email.strip())
        LOG.info(f"Signed in as {session.email}")
        return session

    def sign_up(self, email: str, password: str) -> Optional[AuthSession]:
        """Create an account; returns a session when the backend signs the user in right away."""
        _require_credentials(email, password)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError("A senha deve ter pelo menos 6 caracteres")
        body = self._post("signup", {"email": email.strip(), "password": password})
        if body.get("access_token"):
            return self._session_from(body, email.strip())
        LOG.info(f"Account created for {email.strip()}; confirmation pending")
        return None


class CredentialVault:
    """Single stored credential blob, as JSON readable only by the owner."""

    def __init__(self, path: Optional[str] = None, *, root_dir: Optional[str] = None) -> None:
        if path is None:
            path = os.path.join(state_dir(find_project_root(root_dir), "auth"), VAULT_FILENAME)
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def save(self, blob: Dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(blob, handle)
        os.chmod(self.path, 0o600)
        LOG.debug(f"Credential stored at {self.path}")

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as handle:
            return json.load(handle)

    def clear(self) -> bool:
        if not self.exists():
            return False
        os.remove(self.path)
        return True


class PlatformVerifier(Protocol):
    """Local user-verifying authenticator (fingerprint, face, PIN).

    Implementations raise ``AuthCancelled`` when the user dismisses the
    prompt and ``AuthError`` for any other failure.
    """

    def register(self, account: str) -> str:
        ...

    def verify(self, credential_id: str) -> bool:
        ...


class BiometricGate:
    """Keeps the sign-in credential behind a local authenticator check.

    Unlocking only hands the stored credential back; the backend sign-in
    still has to happen afterwards.
    """

    def __init__(self, verifier: PlatformVerifier, vault: CredentialVault, notifier: Optional[Notifier] = None) -> None:
        self.verifier = verifier
        self.vault = vault
        self.notifier = notifier or Notifier()

    @property
    def is_enrolled(self) -> bool:
        return self.vault.exists()

    def enroll(self, email: str, password: str) -> bool:
        try:
            credential_id = self.verifier.register(email)
        except AuthCancelled:
            LOG.info("Biometric enrollment cancelled by the user")
            self.notifier.error("Autenticação cancelada")
            return False
        except AuthError as exc:
            LOG.error(f"Biometric enrollment failed: {exc}")
            self.notifier.error("Erro ao configurar biometria")
            return False
        self.vault.save(
            {
                "id": credential_id,
                "email": email,
                "password": base64.b64encode(password.encode("utf-8")).decode("ascii"),
            }
        )
        self.notifier.success("Biometria configurada com sucesso!")
        return True

    def unlock(self) -> Optional[Dict[str, str]]:
        """Verify the user locally and return ``{"email", "password"}``."""
        blob = self.vault.load()
        if not blob:
            self.notifier.error("Biometria não configurada")
            return None
        try:
            verified = self.verifier.verify(blob["id"])
        except AuthCancelled:
            self.notifier.error("Autenticação cancelada")
            return None
        except AuthError as exc:
            LOG.error(f"Biometric verification failed: {exc}")
            self.notifier.error("Falha na autenticação")
            return None
        if not verified:
            self.notifier.error("Falha na autenticação")
            return None
        return {
            "email": blob["email"],
            "password": base64.b64decode(blob["password"]).decode("utf-8"),
        }

    def sign_in(self, client: AuthClient) -> Optional[AuthSession]:
        credential = self.unlock()
        if credential is None:
            return None
        try:
            session = client.sign_in_with_password(credential["email"], credential["password"])
        except AuthError as exc:
            self.notifier.error(str(exc))
            return None
        self.notifier.success("Bem-vindo de volta!")
        return session

    def forget(self) -> bool:
        removed = self.vault.clear()
        if removed:
            self.notifier.info("Biometria removida")
        return removed
