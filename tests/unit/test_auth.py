import asyncio
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from dolphin.agents.auth import AuthRetryCoordinator, EnvironmentCredentialProvider
from dolphin.agents.state import AuthState, SessionState
from dolphin.llm.errors import ENTITY_NOT_FOUND, FORBIDDEN, AuthorizationError, ConfigurationError, TransportError
from tests.mocks.fake_genai import FakeCredentials


def _not_found() -> AuthorizationError:
    return AuthorizationError("Requested entity was not found.", reason=ENTITY_NOT_FOUND, status_code=404)


class _FlakyAction:
    def __init__(self, failures) -> None:
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class _SlowCredentials(FakeCredentials):
    async def select_credential(self):
        await asyncio.sleep(0)
        await super().select_credential()


class AuthRetryCoordinatorTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_initialize_reads_provider_once(self) -> None:
        auth = AuthState()
        selected = await AuthRetryCoordinator(FakeCredentials(has_credential=True)).initialize(auth)
        self.assertTrue(selected)
        self.assertTrue(auth.credential_selected)

    async def test_ensure_selects_when_flag_is_false(self) -> None:
        credentials = FakeCredentials()
        refreshed = []
        coordinator = AuthRetryCoordinator(credentials, on_selected=lambda: refreshed.append(True))
        auth = AuthState()

        await coordinator.ensure_credential(auth)
        await coordinator.ensure_credential(auth)

        self.assertTrue(auth.credential_selected)
        self.assertEqual(credentials.select_count, 1)
        self.assertEqual(refreshed, [True])

    async def test_concurrent_first_calls_select_once(self) -> None:
        credentials = _SlowCredentials(has_credential=False)
        coordinator = AuthRetryCoordinator(credentials)
        auth = AuthState()

        await asyncio.gather(coordinator.ensure_credential(auth), coordinator.ensure_credential(auth))

        self.assertEqual(credentials.select_count, 1)
        self.assertTrue(auth.credential_selected)

    async def test_explicit_select_always_prompts(self) -> None:
        credentials = FakeCredentials(has_credential=True)
        coordinator = AuthRetryCoordinator(credentials)
        auth = AuthState(credential_selected=True)
        await coordinator.select(auth)
        self.assertEqual(credentials.select_count, 1)

    async def test_missing_provider_is_tolerated(self) -> None:
        auth = AuthState()
        await AuthRetryCoordinator(None).ensure_credential(auth)
        self.assertTrue(auth.credential_selected)

    def test_invalidate_only_on_authorization_signals(self) -> None:
        coordinator = AuthRetryCoordinator(FakeCredentials())
        auth = AuthState(credential_selected=True)
        self.assertFalse(coordinator.invalidate_on(auth, TransportError("down")))
        self.assertTrue(auth.credential_selected)
        self.assertTrue(coordinator.invalidate_on(auth, AuthorizationError("no", reason=FORBIDDEN, status_code=403)))
        self.assertFalse(auth.credential_selected)
        auth.credential_selected = True
        self.assertTrue(coordinator.invalidate_on(auth, ConfigurationError("API Key not found")))
        self.assertFalse(auth.credential_selected)

    async def test_entity_not_found_reprompts_and_retries_once(self) -> None:
        credentials = FakeCredentials(has_credential=True)
        coordinator = AuthRetryCoordinator(credentials)
        state = SessionState(session_id="s")
        state.auth.credential_selected = True
        action = _FlakyAction([_not_found()])

        result = await coordinator.run_with_reprompt(state, action)

        self.assertEqual(result, "ok")
        self.assertEqual(action.calls, 2)
        self.assertEqual(credentials.select_count, 1)
        self.assertTrue(state.auth.credential_selected)

    async def test_second_failure_is_terminal(self) -> None:
        credentials = FakeCredentials(has_credential=True)
        coordinator = AuthRetryCoordinator(credentials)
        state = SessionState(session_id="s")
        state.auth.credential_selected = True
        action = _FlakyAction([_not_found(), _not_found()])

        with self.assertRaises(AuthorizationError):
            await coordinator.run_with_reprompt(state, action)

        self.assertEqual(action.calls, 2)
        self.assertEqual(credentials.select_count, 1)
        self.assertFalse(state.auth.credential_selected)

    async def test_other_failures_are_not_retried(self) -> None:
        coordinator = AuthRetryCoordinator(FakeCredentials(has_credential=True))
        state = SessionState(session_id="s")
        state.auth.credential_selected = True
        action = _FlakyAction([AuthorizationError("no", reason=FORBIDDEN, status_code=403)])

        with self.assertRaises(AuthorizationError):
            await coordinator.run_with_reprompt(state, action)
        self.assertEqual(action.calls, 1)
        self.assertFalse(state.auth.credential_selected)


class EnvironmentCredentialProviderTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_has_credential_reads_environment(self) -> None:
        with patch.dict(os.environ, {"DOLPHIN_TEST_KEY": "abc"}, clear=False):
            provider = EnvironmentCredentialProvider(api_key_env="DOLPHIN_TEST_KEY", env_path="/nonexistent/.env")
            self.assertTrue(await provider.has_credential())

    async def test_fallback_key_variables_count_as_credential(self) -> None:
        with patch.dict(os.environ, {"GOOGLE_API_KEY": "g-key"}, clear=True):
            provider = EnvironmentCredentialProvider(api_key_env="DOLPHIN_TEST_KEY", env_path="/nonexistent/.env")
            self.assertTrue(await provider.has_credential())

    async def test_blank_keys_are_not_a_credential(self) -> None:
        with patch.dict(os.environ, {"DOLPHIN_TEST_KEY": "  ", "API_KEY": ""}, clear=True):
            provider = EnvironmentCredentialProvider(api_key_env="DOLPHIN_TEST_KEY", env_path="/nonexistent/.env")
            self.assertFalse(await provider.has_credential())

    async def test_select_reloads_env_file_with_override(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir, patch.dict(os.environ, {"DOLPHIN_TEST_KEY": "old"}, clear=False):
            env_path = Path(tmpdir) / ".env"
            env_path.write_text("DOLPHIN_TEST_KEY=new\n", encoding="utf-8")
            provider = EnvironmentCredentialProvider(api_key_env="DOLPHIN_TEST_KEY", env_path=str(env_path))
            await provider.select_credential()
            self.assertEqual(os.environ["DOLPHIN_TEST_KEY"], "new")

    async def test_select_uses_prompt(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            provider = EnvironmentCredentialProvider(
                api_key_env="DOLPHIN_TEST_KEY",
                prompt=lambda label: "  typed-key  ",
                env_path="/nonexistent/.env",
            )
            self.assertFalse(await provider.has_credential())
            await provider.select_credential()
            self.assertEqual(os.environ["DOLPHIN_TEST_KEY"], "typed-key")


if __name__ == "__main__":
    unittest.main()
