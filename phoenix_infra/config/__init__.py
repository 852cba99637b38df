"""Configuration loading, inventory parsing, and validation."""

from phoenix_infra.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_OVERRIDES,
    InventoryHost,
    load_config,
    parse_inventory,
)
from phoenix_infra.config.models import (
    AnsibleSettings,
    AuthSettings,
    BackendSettings,
    BootstrapPlaybooks,
    ConfigError,
    OrchestratorConfig,
    Reachability,
    ReadinessSettings,
    RemoteTarget,
    TeardownSettings,
    TerraformSettings,
    VaultSettings,
)

__all__ = [
    "AnsibleSettings",
    "AuthSettings",
    "BackendSettings",
    "BootstrapPlaybooks",
    "ConfigError",
    "DEFAULT_CONFIG_FILE",
    "ENV_OVERRIDES",
    "InventoryHost",
    "OrchestratorConfig",
    "Reachability",
    "ReadinessSettings",
    "RemoteTarget",
    "TeardownSettings",
    "TerraformSettings",
    "VaultSettings",
    "load_config",
    "parse_inventory",
]
