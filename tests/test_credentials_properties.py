"""Tests for token lookup order, keyring storage and the interactive prompt."""

import json
import threading
from io import StringIO
from unittest.mock import Mock, patch

import keyring
import pytest
import requests
from keyring.errors import KeyringError

from fakes import MemoryKeyring
from star_watcher.auth import (
    CachedCredentialProvider,
    ChainedCredentialProvider,
    ConfigCredentialProvider,
    EnvironmentCredentialProvider,
    KeyringCredentialProvider,
    PromptCredentialProvider,
    default_credential_provider,
    github_token_validator,
)
from star_watcher.auth.credentials import KEYRING_SERVICE, KEYRING_USERNAME
from star_watcher.errors import AuthenticationError, CredentialStorageError
from star_watcher.models.config import GitHubConfig


@pytest.fixture(autouse=True)
def no_token_in_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)


@pytest.fixture(autouse=True)
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


def prompt_with(token: str, stream: StringIO | None = None, **kwargs) -> PromptCredentialProvider:
    return PromptCredentialProvider(
        Mock(return_value=token), stream=stream or StringIO(), is_interactive=lambda: True, **kwargs
    )


class TestSingleProviders:
    def test_config_token(self):
        credential = ConfigCredentialProvider(GitHubConfig(token="ghp_config")).get_credential()
        assert credential.value == "ghp_config"
        assert credential.source == "config"

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_config_without_token(self, token):
        assert ConfigCredentialProvider(GitHubConfig(token=token)).get_credential() is None

    def test_environment_token(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env\n")
        credential = EnvironmentCredentialProvider().get_credential()
        assert credential.value == "ghp_env"
        assert credential.source == "environment"

    def test_environment_missing(self):
        assert EnvironmentCredentialProvider().get_credential() is None


class TestPrompt:
    def test_prompt_reads_secret(self):
        stream = StringIO()
        read_secret = Mock(return_value=" ghp_typed ")
        provider = PromptCredentialProvider(read_secret, stream=stream, is_interactive=lambda: True)

        credential = provider.get_credential()

        assert credential.value == "ghp_typed"
        assert credential.source == "prompt"
        assert "github.com/settings/tokens" in stream.getvalue()
        read_secret.assert_called_once_with("GitHub Token: ")

    def test_prompt_skipped_without_terminal(self):
        read_secret = Mock()
        provider = PromptCredentialProvider(read_secret, stream=StringIO(), is_interactive=lambda: False)
        assert provider.get_credential() is None
        read_secret.assert_not_called()

    def test_empty_entry_means_unauthenticated(self):
        provider = PromptCredentialProvider(
            Mock(return_value=""), stream=StringIO(), is_interactive=lambda: True
        )
        assert provider.get_credential() is None


class TestKeyring:
    def test_stored_token_is_read(self, memory_keyring: MemoryKeyring):
        memory_keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, "ghp_stored")
        credential = KeyringCredentialProvider().get_credential()
        assert credential.value == "ghp_stored"
        assert credential.source == "keyring"

    def test_store_then_remove(self, memory_keyring: MemoryKeyring):
        provider = KeyringCredentialProvider()
        provider.store(" ghp_new ")
        assert memory_keyring.passwords[(KEYRING_SERVICE, KEYRING_USERNAME)] == "ghp_new"

        assert provider.remove()
        assert not provider.remove()
        assert provider.get_credential() is None

    def test_empty_token_not_stored(self, memory_keyring: MemoryKeyring):
        with pytest.raises(CredentialStorageError):
            KeyringCredentialProvider().store("  ")
        assert memory_keyring.passwords == {}

    def test_broken_backend_reads_as_no_token(self, memory_keyring: MemoryKeyring):
        memory_keyring.get_password = Mock(side_effect=KeyringError("locked"))
        assert KeyringCredentialProvider().get_credential() is None

    def test_broken_backend_on_store_is_typed(self, memory_keyring: MemoryKeyring):
        memory_keyring.set_password = Mock(side_effect=KeyringError("locked"))
        with pytest.raises(CredentialStorageError):
            KeyringCredentialProvider().store("ghp_new")


class TestPromptValidation:
    def test_validated_token_is_stored(self, memory_keyring: MemoryKeyring):
        validator = Mock()
        stream = StringIO()
        provider = prompt_with(
            "ghp_typed", stream, validator=validator, keyring_store=KeyringCredentialProvider()
        )

        assert provider.get_credential().value == "ghp_typed"
        validator.assert_called_once_with("ghp_typed")
        assert memory_keyring.passwords[(KEYRING_SERVICE, KEYRING_USERNAME)] == "ghp_typed"
        assert "Token stored in the system keyring" in stream.getvalue()

    def test_rejected_token_is_raised_and_not_stored(self, memory_keyring: MemoryKeyring):
        validator = Mock(side_effect=AuthenticationError("Bad credentials"))
        provider = prompt_with("ghp_bad", validator=validator, keyring_store=KeyringCredentialProvider())

        with pytest.raises(AuthenticationError):
            provider.get_credential()
        assert memory_keyring.passwords == {}

    def test_store_failure_keeps_token_for_this_run(self, memory_keyring: MemoryKeyring):
        memory_keyring.set_password = Mock(side_effect=KeyringError("locked"))
        stream = StringIO()
        provider = prompt_with(
            "ghp_typed", stream, validator=Mock(), keyring_store=KeyringCredentialProvider()
        )

        assert provider.get_credential().value == "ghp_typed"
        assert "could not store the token" in stream.getvalue()

    def test_token_checked_against_user_endpoint(self):
        response = requests.Response()
        response.status_code = 401
        response.url = "https://api.github.com/user"
        response._content = json.dumps({"message": "Bad credentials"}).encode()

        with patch("requests.Session.get", return_value=response) as get:
            with pytest.raises(AuthenticationError):
                github_token_validator(GitHubConfig())("ghp_bad")

        assert get.call_args.args[0] == "https://api.github.com/user"


class TestChaining:
    def test_config_takes_precedence_over_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        credential = default_credential_provider(GitHubConfig(token="ghp_config")).get_credential()
        assert credential.source == "config"

    def test_environment_used_when_config_empty(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        assert default_credential_provider(GitHubConfig()).get_credential().source == "environment"

    def test_nothing_configured(self):
        assert default_credential_provider(GitHubConfig()).get_credential() is None

    def test_keyring_used_after_environment(self, memory_keyring: MemoryKeyring, monkeypatch):
        memory_keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, "ghp_stored")
        assert default_credential_provider(GitHubConfig()).get_credential().source == "keyring"

        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        assert default_credential_provider(GitHubConfig()).get_credential().source == "environment"

    def test_keyring_ignored_when_disabled(self, memory_keyring: MemoryKeyring):
        memory_keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, "ghp_stored")
        assert default_credential_provider(GitHubConfig(use_keyring=False)).get_credential() is None

    def test_later_providers_not_consulted_after_match(self):
        fallback = Mock()
        chain = ChainedCredentialProvider([ConfigCredentialProvider(GitHubConfig(token="t")), fallback])
        chain.get_credential()
        fallback.get_credential.assert_not_called()


def test_cached_provider_resolves_once_across_threads():
    inner = Mock()
    inner.get_credential.return_value = None
    cached = CachedCredentialProvider(inner)

    threads = [threading.Thread(target=cached.get_credential) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert cached.get_credential() is None
    inner.get_credential.assert_called_once()


def test_cached_provider_remembers_rejection():
    inner = Mock()
    inner.get_credential.side_effect = AuthenticationError("Bad credentials")
    cached = CachedCredentialProvider(inner)

    for _ in range(3):
        with pytest.raises(AuthenticationError):
            cached.get_credential()
    inner.get_credential.assert_called_once()
