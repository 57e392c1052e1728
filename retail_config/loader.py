"""
YAML reading and merging for ``retail_config``.

Only plain dicts leave this module; ``schema.RetailKernelConfig.from_dict``
turns them into typed sections.  A missing file raises
``FileNotFoundError`` and bad YAML raises ``yaml.YAMLError``; neither is
caught here.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parse one YAML document; an empty file yields ``{}``."""
    text = Path(path).read_text()
    document = yaml.safe_load(text)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"Configuration root in {path} must be a mapping")
    return document


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """New dict: ``override`` layered onto ``base``, nested mappings merged per key."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over sorted-key JSON, so key order never changes the result."""
    payload = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
