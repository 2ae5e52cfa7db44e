"""
netprov configuration.

Provides:
- Pydantic-based stack settings (environment variables, .env, stack file)
- Multi-backend secrets resolution (env, file, GCP Secret Manager)
- Immutable template documents with pure merge/substitution
"""

from netprov.config.document import ConfigDocument, deep_merge, substitute_variables
from netprov.config.loader import (
    ConfigLoader,
    TemplateLoader,
    get_config_path,
    load_secrets_config,
    load_settings,
)
from netprov.config.secrets import (
    SecretBackend,
    SecretConfig,
    SecretRef,
    SecretResolver,
)
from netprov.config.settings import Settings

__all__ = [
    # Settings
    "Settings",
    # Documents
    "ConfigDocument",
    "deep_merge",
    "substitute_variables",
    # Secrets
    "SecretBackend",
    "SecretConfig",
    "SecretRef",
    "SecretResolver",
    # Loader
    "ConfigLoader",
    "TemplateLoader",
    "get_config_path",
    "load_secrets_config",
    "load_settings",
]
