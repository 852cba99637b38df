"""Config loading: YAML file, environment overrides, Ansible inventory.

Resolution order for every value (first hit wins):

1. Environment variables (``PHOENIX_*``, ``AWS_PROFILE``, ``AWS_REGION``)
2. The YAML config file (``--config``, default ``phoenix.yaml`` if present)
3. For targets only: the Ansible inventory (INI or YAML)
4. Model defaults

- :func:`load_config`: build the :class:`OrchestratorConfig` once at start
- :func:`parse_inventory`: map inventory group names to hosts
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

import yaml
from pydantic import ValidationError

from phoenix_infra.config.models import ConfigError, OrchestratorConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "phoenix.yaml"

#: Environment variable → dotted config key.
ENV_OVERRIDES: Dict[str, str] = {
    "PHOENIX_CONTROL_PLANE": "control_plane",
    "PHOENIX_SSH_USER": "ssh_user",
    "PHOENIX_SSH_KEY": "ssh_key",
    "PHOENIX_TERRAFORM_DIR": "terraform.working_dir",
    "PHOENIX_ANSIBLE_DIR": "ansible.working_dir",
    "PHOENIX_INVENTORY": "ansible.inventory",
    "AWS_PROFILE": "aws_profile",
}


# ---------------------------------------------------------------------------
# Inventory parsing
# ---------------------------------------------------------------------------


class InventoryHost(NamedTuple):
    """One host line: alias, address, and any per-host SSH identity.

    ``user`` and ``key_path`` stay empty unless the inventory sets
    ``ansible_user`` / ``ansible_ssh_private_key_file`` for the host.
    """

    alias: str
    address: str
    user: str = ""
    key_path: str = ""


def _inventory_host(alias: str, host_vars: Mapping[str, Any]) -> InventoryHost:
    return InventoryHost(
        alias,
        str(host_vars.get("ansible_host", alias)),
        str(host_vars.get("ansible_user", "")),
        str(host_vars.get("ansible_ssh_private_key_file", "")),
    )


def _parse_ini_inventory(text: str) -> Dict[str, List[InventoryHost]]:
    groups: Dict[str, List[InventoryHost]] = {}
    current: Optional[str] = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            name = line[1:-1].strip()
            # [group:vars] and [group:children] carry no host lines.
            current = None if ":" in name else name
            if current is not None:
                groups.setdefault(current, [])
            continue
        if current is None:
            continue
        alias, *pairs = line.split()
        host_vars = dict(p.split("=", 1) for p in pairs if "=" in p)
        groups[current].append(_inventory_host(alias, host_vars))
    return groups


def _walk_yaml_group(
    name: str,
    node: Any,
    groups: Dict[str, List[InventoryHost]],
) -> None:
    if not isinstance(node, dict):
        return
    hosts = node.get("hosts") or {}
    addrs = groups.setdefault(name, [])
    for alias, host_vars in hosts.items():
        addrs.append(_inventory_host(str(alias), host_vars or {}))
    for child_name, child in (node.get("children") or {}).items():
        _walk_yaml_group(child_name, child, groups)


def parse_inventory(path: Path) -> Dict[str, List[InventoryHost]]:
    """Return ``{group: [InventoryHost, ...]}`` from an INI or YAML inventory.

    Host addresses are taken from ``ansible_host`` when set, otherwise the
    inventory alias.  Missing files yield an empty mapping.
    """
    if not path.is_file():
        return {}
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yml", ".yaml"):
        data = yaml.safe_load(text) or {}
        groups: Dict[str, List[InventoryHost]] = {}
        for name, node in data.items():
            _walk_yaml_group(name, node, groups)
        return groups
    return _parse_ini_inventory(text)


def _first_group_hosts(
    groups: Mapping[str, List[InventoryHost]], names: List[str],
) -> List[InventoryHost]:
    for name in names:
        if groups.get(name):
            return list(groups[name])
    return []


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _set_dotted(data: Dict[str, Any], dotted: str, value: Any) -> None:
    node = data
    *parents, leaf = dotted.split(".")
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[leaf] = value


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return raw


def load_config(
    path: Optional[str | Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> OrchestratorConfig:
    """Load the orchestrator config.

    *path* must exist when given explicitly; otherwise ``phoenix.yaml`` in
    the working directory is used if present.  Raises :class:`ConfigError`
    on unreadable or invalid configuration.
    """
    env = os.environ if env is None else env

    raw: Dict[str, Any] = {}
    if path is not None:
        cfg_path = Path(path)
        if not cfg_path.is_file():
            raise ConfigError(f"Config file not found: {cfg_path}")
        raw = _read_yaml(cfg_path)
    elif Path(DEFAULT_CONFIG_FILE).is_file():
        raw = _read_yaml(Path(DEFAULT_CONFIG_FILE))

    for var, dotted in ENV_OVERRIDES.items():
        if env.get(var):
            _set_dotted(raw, dotted, env[var])

    if env.get("PHOENIX_WORKERS"):
        raw["workers"] = [
            w.strip() for w in env["PHOENIX_WORKERS"].split(",") if w.strip()
        ]

    region = env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION")
    if region:
        raw["aws_region"] = region

    try:
        cfg = OrchestratorConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    _fill_targets_from_inventory(cfg)
    return cfg


def _fill_targets_from_inventory(cfg: OrchestratorConfig) -> None:
    groups = parse_inventory(cfg.inventory_path)
    if not groups:
        return

    for hosts in groups.values():
        for host in hosts:
            cfg.host_aliases.setdefault(host.address, host.alias)
            if host.user:
                cfg.host_users.setdefault(host.address, host.user)
            if host.key_path:
                cfg.host_keys.setdefault(host.address, host.key_path)

    control = _first_group_hosts(groups, cfg.ansible.control_plane_groups)
    if not cfg.control_plane and control:
        cfg.control_plane = control[0].address
        logger.debug("Control plane from inventory: %s", cfg.control_plane)

    if not cfg.workers:
        workers = _first_group_hosts(groups, cfg.ansible.worker_groups)
        cfg.workers = [
            w.address for w in workers if w.address != cfg.control_plane
        ]
