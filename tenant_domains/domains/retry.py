"""
Bounded retry-with-refresh for calls against credentialed remote APIs.

A call that is rejected for authentication gets exactly one retry after
the credential is refreshed. Whatever happens on that retry is final.
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CredentialError

logger = logging.getLogger("tenant_domains.domains.retry")

T = TypeVar("T")


class AuthRejected(Exception):
    """Raised by a remote call when the provider answered 401/403."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"provider rejected credentials (HTTP {status})")
        self.status = status


class TokenSource:
    """
    Holds the provider API token.

    ``refresh()`` re-reads the token file when one is configured; a token
    given inline cannot be refreshed.
    """

    def __init__(self, token: str = "", token_file: Optional[str] = None):
        self._token = token
        self.token_file = token_file
        if token_file and not token:
            self._token = self._read_file() or ""

    @property
    def token(self) -> str:
        return self._token

    def _read_file(self) -> Optional[str]:
        try:
            return Path(self.token_file).read_text().strip()
        except OSError as e:
            logger.warning(f"Could not read token file {self.token_file}: {e}")
            return None

    def refresh(self) -> bool:
        """Reload the token. Returns True only if a different token was found."""
        if not self.token_file:
            return False
        fresh = self._read_file()
        if not fresh or fresh == self._token:
            return False
        self._token = fresh
        logger.info("Provider token refreshed from file")
        return True


async def call_with_refresh(
    fn: Callable[[], Awaitable[T]],
    refresh: Callable[[], bool],
    description: str = "remote call",
) -> T:
    """
    Await *fn*; on :class:`AuthRejected`, refresh once and retry once.

    Raises
    ------
    CredentialError
        When the credential cannot be refreshed or the retry is rejected too.
    """
    try:
        return await fn()
    except AuthRejected as first:
        logger.warning(f"{description} rejected (HTTP {first.status}), refreshing credentials")
        if not refresh():
            raise CredentialError(
                f"{description} rejected and no fresh credential is available",
                details={"status": first.status},
            ) from first

    try:
        return await fn()
    except AuthRejected as second:
        raise CredentialError(
            f"{description} rejected again after credential refresh",
            details={"status": second.status},
        ) from second
