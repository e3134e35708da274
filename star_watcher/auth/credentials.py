"""GitHub token lookup from settings, environment, system keyring and interactive prompt."""

import getpass
import os
import sys
import threading
from typing import Callable, Sequence, TextIO

import keyring
import structlog
from keyring.errors import KeyringError, NoKeyringError, PasswordDeleteError

from star_watcher.errors import CredentialStorageError, MonitorError
from star_watcher.github.client import GitHubClient
from star_watcher.interfaces import Credential, CredentialProvider
from star_watcher.models.config import GitHubConfig

log = structlog.stdlib.get_logger()

TOKEN_ENV_VAR = "GITHUB_TOKEN"
KEYRING_SERVICE = "star-watcher"
KEYRING_USERNAME = "github-token"

# Raises AuthenticationError for a token GitHub rejects
TokenValidator = Callable[[str], None]


def github_token_validator(config: GitHubConfig) -> TokenValidator:
    """Validator that checks a token with ``GET /user`` on a short-lived client."""

    def validate(token: str) -> None:
        client = GitHubClient(config, token=token)
        try:
            client.validate_token()
        finally:
            client.close()

    return validate


class ConfigCredentialProvider(CredentialProvider):
    """Token from ``github.token`` in the loaded settings."""

    def __init__(self, config: GitHubConfig) -> None:
        self._config = config

    def get_credential(self) -> Credential | None:
        if self._config.token is None:
            return None
        value = self._config.token.get_secret_value().strip()
        return Credential(value, "config") if value else None


class EnvironmentCredentialProvider(CredentialProvider):
    """Token from the ``GITHUB_TOKEN`` environment variable."""

    def __init__(self, env_var: str = TOKEN_ENV_VAR) -> None:
        self.env_var = env_var

    def get_credential(self) -> Credential | None:
        value = os.environ.get(self.env_var, "").strip()
        return Credential(value, "environment") if value else None


class KeyringCredentialProvider(CredentialProvider):
    """Token kept in the system keyring between runs.

    A missing or unusable keyring backend reads as "no token", so hosts
    without a keyring still run unauthenticated.
    """

    def __init__(self, service: str = KEYRING_SERVICE, username: str = KEYRING_USERNAME) -> None:
        self.service = service
        self.username = username

    def get_credential(self) -> Credential | None:
        try:
            value = keyring.get_password(self.service, self.username)
        except NoKeyringError:
            log.debug("keyring_unavailable", service=self.service)
            return None
        except KeyringError as e:
            log.warning("keyring_read_failed", service=self.service, error=str(e))
            return None
        value = (value or "").strip()
        return Credential(value, "keyring") if value else None

    def store(self, token: str) -> None:
        """
        Save a token in the keyring, replacing any stored one.

        Raises:
            CredentialStorageError: If the token is empty or the backend refuses it
        """
        if not token.strip():
            raise CredentialStorageError("token cannot be empty")
        try:
            keyring.set_password(self.service, self.username, token.strip())
        except KeyringError as e:
            raise CredentialStorageError(f"failed to store token: {e}", service=self.service) from e
        log.info("token_stored", service=self.service)

    def remove(self) -> bool:
        """Delete the stored token; False if none was stored."""
        try:
            if keyring.get_password(self.service, self.username) is None:
                return False
            keyring.delete_password(self.service, self.username)
        except NoKeyringError:
            log.debug("token_remove_skipped", reason="no keyring backend")
            return False
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            raise CredentialStorageError(f"failed to remove token: {e}", service=self.service) from e
        log.info("token_removed", service=self.service)
        return True


class PromptCredentialProvider(CredentialProvider):
    """Ask for a token on the terminal without echoing it.

    Returns None when stdin is not a TTY or the entry is empty, so an
    unattended run continues unauthenticated instead of blocking. With a
    ``validator`` the entered token is checked against GitHub first and a
    rejection is raised; with a ``keyring_store`` a checked token is kept
    for later runs.
    """

    def __init__(
        self,
        read_secret: Callable[[str], str] = getpass.getpass,
        stream: TextIO | None = None,
        is_interactive: Callable[[], bool] | None = None,
        validator: TokenValidator | None = None,
        keyring_store: KeyringCredentialProvider | None = None,
    ) -> None:
        self._read_secret = read_secret
        self._stream = stream or sys.stderr
        self._is_interactive = is_interactive or sys.stdin.isatty
        self._validator = validator
        self._keyring_store = keyring_store

    def get_credential(self) -> Credential | None:
        if not self._is_interactive():
            log.debug("token_prompt_skipped", reason="stdin is not a terminal")
            return None

        self._stream.write(
            "GitHub token not found. Enter a personal access token.\n"
            "Create one at https://github.com/settings/tokens "
            "(scope: public_repo, or repo for private repositories).\n"
        )
        value = self._read_secret("GitHub Token: ").strip()
        if not value:
            return None

        if self._validator is not None:
            self._validator(value)
            if self._keyring_store is not None:
                self._remember(value)
        return Credential(value, "prompt")

    def _remember(self, token: str) -> None:
        try:
            self._keyring_store.store(token)
        except CredentialStorageError as e:
            log.warning("token_store_failed", error=str(e))
            self._stream.write(f"Warning: could not store the token in the keyring: {e.message}\n")
        else:
            self._stream.write("Token stored in the system keyring.\n")


class ChainedCredentialProvider(CredentialProvider):
    """First credential returned by any of the given providers."""

    def __init__(self, providers: Sequence[CredentialProvider]) -> None:
        self.providers = list(providers)

    def get_credential(self) -> Credential | None:
        for provider in self.providers:
            credential = provider.get_credential()
            if credential is not None:
                log.debug("credential_resolved", source=credential.source)
                return credential
        return None


class CachedCredentialProvider(CredentialProvider):
    """Resolves the wrapped provider once and reuses the answer.

    Concurrent cycles share one lookup, so a terminal prompt is shown at most
    once. A rejected token is remembered too and raised to every caller.
    """

    def __init__(self, provider: CredentialProvider) -> None:
        self.provider = provider
        self._lock = threading.Lock()
        self._resolved = False
        self._credential: Credential | None = None
        self._error: MonitorError | None = None

    def get_credential(self) -> Credential | None:
        with self._lock:
            if not self._resolved:
                try:
                    self._credential = self.provider.get_credential()
                except MonitorError as e:
                    self._error = e
                self._resolved = True
            if self._error is not None:
                raise self._error
            return self._credential


def default_credential_provider(
    config: GitHubConfig,
    prompt: bool = False,
    validator: TokenValidator | None = None,
) -> CredentialProvider:
    """Settings, then environment, then the keyring, then (with ``prompt``) the terminal.

    A prompted token is validated and stored in the keyring when
    ``config.use_keyring`` is set.
    """
    providers: list[CredentialProvider] = [
        ConfigCredentialProvider(config),
        EnvironmentCredentialProvider(),
    ]
    keyring_provider = KeyringCredentialProvider() if config.use_keyring else None
    if keyring_provider is not None:
        providers.append(keyring_provider)
    if prompt:
        providers.append(
            PromptCredentialProvider(
                validator=validator or github_token_validator(config),
                keyring_store=keyring_provider,
            )
        )
    return CachedCredentialProvider(ChainedCredentialProvider(providers))
