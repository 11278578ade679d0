"""
Configuration merger for Botrelay.

Deep merge of configuration layers with list operations (+/- key prefixes).
"""

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Merge `override` into a copy of `base`.

    Rules:
    - nested dicts merge recursively, other values are replaced
    - "+key": [...] appends items missing from base's list
    - "-key": [...] removes items from base's list
    - key: null removes the key

    Examples:
        >>> deep_merge({"allowed_users": ["1"]}, {"+allowed_users": ["2"]})
        {'allowed_users': ['1', '2']}
    """
    result = dict(base)

    for key, value in override.items():
        op, name = (key[0], key[1:]) if key[:1] in ("+", "-") else ("", key)
        current = result.get(name)

        if op and isinstance(value, list):
            if not isinstance(current, list):
                if op == "+":
                    result[name] = list(value)
            elif op == "+":
                result[name] = current + [item for item in value if item not in current]
            else:
                result[name] = [item for item in current if item not in value]
        elif value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def get_nested_value(config: dict[str, Any], key_path: str) -> Any:
    """
    Get a value by dot-separated path, or None if any segment is missing.

    Examples:
        >>> get_nested_value({"agent": {"model": "gpt-4o"}}, "agent.model")
        'gpt-4o'
    """
    current: Any = config
    for key in key_path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def set_nested_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    """
    Set a value by dot-separated path, creating intermediate dicts.

    Returns:
        The modified configuration dictionary.
    """
    *parents, last = key_path.split(".")
    current = config
    for key in parents:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[last] = value
    return config


def resolve_key_path(config: dict[str, Any], parts: list[str]) -> str:
    """
    Turn underscore-split name parts into a dot path using known keys.

    Config keys may contain underscores themselves ("bot_token",
    "max_rounds"), so segments are joined greedily: the longest run of
    parts that names an existing key at each level wins. Unknown tails
    are joined with underscores into a single final key.

    Examples:
        >>> resolve_key_path({"platforms": {"telegram": {"bot_token": ""}}},
        ...                  ["platforms", "telegram", "bot", "token"])
        'platforms.telegram.bot_token'
    """
    path: list[str] = []
    current: Any = config
    i = 0
    while i < len(parts):
        match = None
        if isinstance(current, dict):
            for j in range(len(parts), i, -1):
                candidate = "_".join(parts[i:j])
                if candidate in current:
                    match = (candidate, j)
                    break
        if match is None:
            path.append("_".join(parts[i:]))
            break
        key, i = match
        path.append(key)
        current = current[key]
    return ".".join(path)
