"""Role configuration resolution and credential gating."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from model_relay.config import Settings
from model_relay.orchestrator.errors import ConfigurationError
from model_relay.orchestrator.models import ProviderBinding, Role

SUPPORTED_PROVIDERS = (
    "anthropic",
    "openai",
    "google",
    "perplexity",
    "mistral",
    "azure",
    "openrouter",
    "xai",
    "ollama",
    "echo",
)

# Local/self-hosted providers that run without an API key.
CREDENTIAL_EXEMPT_PROVIDERS = frozenset({"ollama", "echo"})

CREDENTIAL_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "xai": "XAI_API_KEY",
}


@dataclass(slots=True)
class RoleParameters:
    """Generation parameters configured for a role."""

    max_tokens: int
    temperature: float


class RoleConfigSource(Protocol):
    """Configuration collaborator mapping roles to providers and credentials."""

    def get_provider_for_role(self, role: Role, project_root: str | None) -> str | None:
        """Return the provider id bound to the role, if any."""

    def get_model_for_role(self, role: Role, project_root: str | None) -> str | None:
        """Return the model id bound to the role, if any."""

    def get_parameters_for_role(self, role: Role, project_root: str | None) -> RoleParameters:
        """Return generation parameters for the role."""

    def is_credential_set(
        self,
        provider: str,
        session: Mapping[str, str] | None,
        project_root: str | None,
    ) -> bool:
        """Return True when an API key for the provider is available."""


class EnvRoleConfig:
    """Configuration collaborator backed by `Settings` and process environment."""

    def __init__(
        self,
        settings: Settings,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self._environ = environ

    def get_provider_for_role(self, role: Role, project_root: str | None) -> str | None:
        return self.settings.role(role.value).provider

    def get_model_for_role(self, role: Role, project_root: str | None) -> str | None:
        return self.settings.role(role.value).model

    def get_parameters_for_role(self, role: Role, project_root: str | None) -> RoleParameters:
        role_settings = self.settings.role(role.value)
        return RoleParameters(
            max_tokens=role_settings.max_tokens,
            temperature=role_settings.temperature,
        )

    def is_credential_set(
        self,
        provider: str,
        session: Mapping[str, str] | None,
        project_root: str | None,
    ) -> bool:
        env_var = CREDENTIAL_ENV_VARS.get(provider)
        if env_var is None:
            return False
        if session and session.get(env_var, "").strip():
            return True
        environ = self._environ if self._environ is not None else os.environ
        return bool(environ.get(env_var, "").strip())


class RoleConfigResolver:
    """Resolves role bindings on every call so config changes apply immediately."""

    def __init__(self, source: RoleConfigSource) -> None:
        self.source = source

    def resolve(self, role: Role, project_root: str | None = None) -> ProviderBinding:
        """Resolve provider, model and parameters for the role."""

        provider = self.source.get_provider_for_role(role, project_root)
        model_id = self.source.get_model_for_role(role, project_root)
        if not provider or not provider.strip() or not model_id or not model_id.strip():
            raise ConfigurationError(
                f"Configuration missing for role {role.value!r}. "
                f"Provider: {provider!r}, Model: {model_id!r}",
                role=role,
            )
        provider = _normalize_provider(provider)
        _validate_supported_provider(provider, role=role)
        parameters = self.source.get_parameters_for_role(role, project_root)
        return ProviderBinding(
            role=role,
            provider=provider,
            model_id=model_id.strip(),
            max_output_tokens=parameters.max_tokens,
            temperature=parameters.temperature,
        )

    def has_credential(
        self,
        provider: str,
        session: Mapping[str, str] | None = None,
        project_root: str | None = None,
    ) -> bool:
        """Return True if the provider can be called with the current credentials."""

        provider = _normalize_provider(provider)
        if not requires_credential(provider):
            return True
        return self.source.is_credential_set(provider, session, project_root)


def requires_credential(provider: str) -> bool:
    """Return False for providers exempt from credential gating."""

    return _normalize_provider(provider) not in CREDENTIAL_EXEMPT_PROVIDERS


def _normalize_provider(value: str) -> str:
    return value.strip().lower()


def _validate_supported_provider(provider: str, *, role: Role) -> None:
    if provider in SUPPORTED_PROVIDERS:
        return
    raise ConfigurationError(
        f"Unsupported provider {provider!r} configured for role {role.value!r}. "
        f"Use one of {SUPPORTED_PROVIDERS}.",
        role=role,
    )
