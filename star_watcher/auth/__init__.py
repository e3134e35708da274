"""Credential providers for GitHub authentication"""

from star_watcher.auth.credentials import (
    CachedCredentialProvider,
    ChainedCredentialProvider,
    ConfigCredentialProvider,
    EnvironmentCredentialProvider,
    KeyringCredentialProvider,
    PromptCredentialProvider,
    default_credential_provider,
    github_token_validator,
)

__all__ = [
    "CachedCredentialProvider",
    "ChainedCredentialProvider",
    "ConfigCredentialProvider",
    "EnvironmentCredentialProvider",
    "KeyringCredentialProvider",
    "PromptCredentialProvider",
    "default_credential_provider",
    "github_token_validator",
]
