"""Credential selection and the authorization re-prompt protocol."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from dotenv import load_dotenv

from dolphin.agents.state import AuthState, SessionState, append_trace
from dolphin.llm.client import api_key_candidates, resolve_api_key
from dolphin.llm.errors import is_authorization_failure, is_entity_not_found
from dolphin.utils.logger import get_logger


T = TypeVar("T")

logger = get_logger("dolphin.auth")


class CredentialProvider(Protocol):
    async def has_credential(self) -> bool:
        ...

    async def select_credential(self) -> None:
        ...


class EnvironmentCredentialProvider:
    """Credential provider backed by environment variables and `.env` files.

    Args:
        api_key_env: Environment variable holding the key. The client's
            fallback variables also count as a credential.
        prompt: Optional callable asking the user for a key; the CLI passes
            `getpass.getpass`. It runs in a worker thread.
        env_path: `.env` file reloaded on selection.
    """

    def __init__(
        self,
        api_key_env: str = "GEMINI_API_KEY",
        prompt: Optional[Callable[[str], str]] = None,
        env_path: Optional[str] = None,
    ) -> None:
        self.api_key_env = api_key_env
        self.prompt = prompt
        self.env_path = Path(env_path) if env_path else Path.cwd() / ".env"

    async def has_credential(self) -> bool:
        return resolve_api_key(api_key_candidates(self.api_key_env)) is not None

    async def select_credential(self) -> None:
        if self.env_path.exists():
            load_dotenv(dotenv_path=self.env_path, override=True)
        if self.prompt is None:
            return
        entered = await asyncio.to_thread(self.prompt, "{}: ".format(self.api_key_env))
        entered = str(entered or "").strip()
        if entered:
            os.environ[self.api_key_env] = entered


class AuthRetryCoordinator:
    """Tracks the credential-selected flag and drives the re-prompt protocol.

    The flag lives on the session's :class:`AuthState`; the coordinator only
    mutates the value it is handed.
    """

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        on_selected: Optional[Callable[[], None]] = None,
    ) -> None:
        self.credentials = credentials
        self.on_selected = on_selected
        self._lock = asyncio.Lock()

    async def initialize(self, auth: AuthState) -> bool:
        """Reads the provider once and seeds the flag."""
        if self.credentials is None:
            return auth.credential_selected
        auth.credential_selected = bool(await self.credentials.has_credential())
        return auth.credential_selected

    async def ensure_credential(self, auth: AuthState) -> None:
        """Runs credential selection when no credential is selected yet.

        Concurrent callers share one selection: the flag is checked again once
        the lock is held.
        """
        if auth.credential_selected:
            return
        async with self._lock:
            if auth.credential_selected:
                return
            await self._select_locked(auth)

    async def select(self, auth: AuthState) -> None:
        """Runs the selection interaction and sets the flag optimistically.

        A missing provider is tolerated and selection is skipped.
        """
        async with self._lock:
            await self._select_locked(auth)

    async def _select_locked(self, auth: AuthState) -> None:
        if self.credentials is not None:
            await self.credentials.select_credential()
            if self.on_selected is not None:
                self.on_selected()
            logger.info("credential_selected")
        auth.credential_selected = True

    def invalidate_on(self, auth: AuthState, exc: BaseException) -> bool:
        """Clears the flag when `exc` signals an authorization problem.

        Returns:
            True when the flag was cleared.
        """
        if not is_authorization_failure(exc):
            return False
        auth.credential_selected = False
        logger.warning("credential_invalidated error_type=%s", type(exc).__name__)
        return True

    async def run_with_reprompt(
        self,
        state: SessionState,
        action: Callable[[], Awaitable[T]],
    ) -> T:
        """Runs `action`, re-selecting the credential once on entity-not-found.

        Args:
            state: Session whose auth flag is consulted and updated.
            action: Zero-argument coroutine factory performing the call.

        Returns:
            Result of the first successful attempt.

        Raises:
            Exception: The failure of the last attempt.
        """
        await self.ensure_credential(state.auth)
        try:
            return await action()
        except Exception as exc:
            self.invalidate_on(state.auth, exc)
            if not is_entity_not_found(exc):
                raise
            logger.warning("auth_reprompt session_id=%s", state.session_id)
            append_trace(state, "auth", "entity not found; re-selecting credential and retrying once")

        await self.select(state.auth)
        try:
            return await action()
        except Exception as exc:
            self.invalidate_on(state.auth, exc)
            raise
