"""
Google OAuth credentials.

Credentials come from the environment (a `.env` file is loaded by config).
A SecretsProvider memoizes what it loaded for its own lifetime only, so each
engine or test case can hold a fresh provider.
"""

import os
import threading
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import SecretsUnavailableError

CLIENT_ID_VAR = "GOOGLE_CLIENT_ID"
CLIENT_SECRET_VAR = "GOOGLE_CLIENT_SECRET"
REFRESH_TOKEN_VAR = "GOOGLE_REFRESH_TOKEN"


@dataclass(frozen=True)
class Credentials:
    client_id: str
    client_secret: str
    refresh_token: str

    def __repr__(self) -> str:
        return f"Credentials(client_id={self.client_id!r}, client_secret=***, refresh_token=***)"


class SecretsProvider:
    """Lazily loads and caches Credentials from a mapping of variables."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self._env = env
        self._cached: Optional[Credentials] = None
        self._lock = threading.Lock()

    def load(self) -> Credentials:
        """
        Return the credentials, loading them on first use.

        Raises:
            SecretsUnavailableError: if any of the three values is missing
        """
        with self._lock:
            if self._cached is None:
                env = self._env if self._env is not None else os.environ
                values = {
                    var: (env.get(var) or "").strip()
                    for var in (CLIENT_ID_VAR, CLIENT_SECRET_VAR, REFRESH_TOKEN_VAR)
                }
                missing = [var for var, value in values.items() if not value]
                if missing:
                    raise SecretsUnavailableError(missing)
                self._cached = Credentials(
                    client_id=values[CLIENT_ID_VAR],
                    client_secret=values[CLIENT_SECRET_VAR],
                    refresh_token=values[REFRESH_TOKEN_VAR],
                )
            return self._cached

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> "SecretsProvider":
        provider = cls(env={})
        provider._cached = credentials
        return provider
