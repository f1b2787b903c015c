"""
OAuth2 authorization-code flow against Google, with a JSON token cache.

google-auth-oauthlib drives consent and the code exchange; google-auth
holds and refreshes the resulting credentials. The cache file carries
access_token, refresh_token and expiry next to the fields google-auth needs
to rebuild the credentials on the next run.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Sequence, Tuple

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"
SCOPES = [GMAIL_SEND_SCOPE]

log = logging.getLogger(__name__)


class OAuthError(Exception):
    pass


class TokenStore:
    def __init__(self, path, scopes: Sequence[str] = SCOPES):
        self.path = Path(path)
        self.scopes = list(scopes)

    def load(self) -> Optional[Credentials]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise OAuthError(f"Unable to read token file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise OAuthError(f"Token file {self.path} does not hold a JSON object")

        data.setdefault("token", data.get("access_token"))
        try:
            return Credentials.from_authorized_user_info(data, self.scopes)
        except ValueError as e:
            raise OAuthError(f"Token file {self.path} is incomplete, authorize again: {e}") from e

    def save(self, creds: Credentials) -> None:
        data = json.loads(creds.to_json())
        data["access_token"] = creds.token
        data["token_type"] = "Bearer"
        # to_json() drops None values; from_authorized_user_info() needs the key
        data.setdefault("refresh_token", None)

        log.info("Saving credential file to: %s", self.path)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
        except OSError as e:
            raise OAuthError(f"Unable to cache oauth token: {e}") from e


class OAuthClient:
    """Builds google-auth-oauthlib flows for one client-secret configuration."""

    def __init__(self, client_config: dict, redirect_uri: Optional[str] = None, scopes: Sequence[str] = SCOPES):
        section = client_config.get("web") or client_config.get("installed")
        if not section:
            raise OAuthError("Client secret file has no 'web' or 'installed' section")
        if redirect_uri is None:
            uris = section.get("redirect_uris") or []
            if not uris:
                raise OAuthError("No redirect URI configured")
            redirect_uri = uris[0]

        self.client_config = client_config
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        # fail on a malformed config now rather than on the first request
        self._flow()

    @classmethod
    def from_client_secrets_file(cls, path, redirect_uri: Optional[str] = None, **kwargs) -> "OAuthClient":
        """
        Load a client from the JSON downloaded from the Google Cloud console.

        Both "web" and "installed" client types are accepted. When
        ``redirect_uri`` is not given the first registered one is used.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise OAuthError(f"Unable to read client secret file: {e}") from e
        return cls(data, redirect_uri=redirect_uri, **kwargs)

    def _flow(self, state: Optional[str] = None, code_verifier: Optional[str] = None) -> Flow:
        try:
            return Flow.from_client_config(
                self.client_config,
                scopes=self.scopes,
                redirect_uri=self.redirect_uri,
                state=state,
                code_verifier=code_verifier,
                autogenerate_code_verifier=code_verifier is None,
            )
        except ValueError as e:
            raise OAuthError(f"Unable to parse client secret file to config: {e}") from e

    def authorization_url(self, state: str) -> Tuple[str, Optional[str]]:
        """
        Return the consent URL and the PKCE code verifier that goes with it.

        The verifier has to be handed back to exchange_code(). Consent is
        always prompted so Google issues a refresh token every time.
        """
        flow = self._flow(state=state)
        url, _ = flow.authorization_url(access_type="offline", prompt="consent", state=state)
        return url, flow.code_verifier

    def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> Credentials:
        flow = self._flow(code_verifier=code_verifier)
        try:
            flow.fetch_token(code=code)
        except (OAuth2Error, requests.RequestException, ValueError, Warning) as e:
            raise OAuthError(f"Unable to retrieve token from web: {e}") from e
        return flow.credentials


class TokenSource:
    """Hands out valid credentials, refreshing and re-caching as needed."""

    def __init__(self, store: TokenStore, request: Optional[Request] = None):
        self.store = store
        self._request = request or Request()
        self._creds: Optional[Credentials] = None
        self._lock = threading.Lock()

    def credentials(self) -> Credentials:
        with self._lock:
            if self._creds is None:
                self._creds = self.store.load()
                if self._creds is None:
                    raise OAuthError(f"No cached token at {self.store.path}; visit /oauth/authorize first")
            if not self._creds.valid:
                if not self._creds.refresh_token:
                    raise OAuthError("Token expired and has no refresh_token; authorize again")
                log.info("Access token expired, refreshing")
                try:
                    self._creds.refresh(self._request)
                except GoogleAuthError as e:
                    raise OAuthError(f"Unable to refresh token: {e}") from e
                self.store.save(self._creds)
            return self._creds

    def access_token(self) -> str:
        return self.credentials().token

    def set_credentials(self, creds: Credentials) -> None:
        with self._lock:
            self.store.save(creds)
            self._creds = creds
