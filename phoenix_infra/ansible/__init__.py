"""Configuration-management engine (ansible-playbook) CLI wrapper."""

from phoenix_infra.ansible.runner import AnsibleRunner

__all__ = ["AnsibleRunner"]
