"""Storage utilities for Botrelay."""

from botrelay.storage.paths import (
    get_audit_log_path,
    get_botrelay_home,
    get_global_config_path,
    get_memory_dir,
)

__all__ = [
    "get_audit_log_path",
    "get_botrelay_home",
    "get_global_config_path",
    "get_memory_dir",
]
