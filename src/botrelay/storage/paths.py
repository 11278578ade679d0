"""
Path utilities for Botrelay.

Resolves the home directory and the files the gateway keeps there.
"""

import os
from pathlib import Path


def get_botrelay_home() -> Path:
    """
    Get the Botrelay home directory.

    Resolution order:
    1. BOTRELAY_HOME environment variable
    2. Default: ~/.botrelay

    Returns:
        Path to the Botrelay home directory.
    """
    env_home = os.environ.get("BOTRELAY_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".botrelay"


def get_global_config_path() -> Path:
    """Path to ~/.botrelay/config.yaml"""
    return get_botrelay_home() / "config.yaml"


def get_memory_dir() -> Path:
    """Path to ~/.botrelay/memory/, used by the file memory backend."""
    return get_botrelay_home() / "memory"


def get_audit_log_path() -> Path:
    """Path to ~/.botrelay/audit.jsonl"""
    return get_botrelay_home() / "audit.jsonl"
