"""
Settings loader (``accrual_config.loader``).

Loads a YAML settings file with ``yaml.safe_load`` and parses it into the
frozen ``AccrualSettings`` dataclass.  Unknown keys are rejected so typos
do not silently fall back to defaults.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from accrual_config.schema import AccrualSettings, IngestionSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown {section} settings: {sorted(unknown)}")


def parse_settings(data: dict[str, Any]) -> AccrualSettings:
    allowed = {f.name for f in fields(AccrualSettings)}
    _check_keys("accrual", data, allowed)

    ingestion_data = data.get("ingestion") or {}
    _check_keys("ingestion", ingestion_data, {f.name for f in fields(IngestionSettings)})

    kwargs: dict[str, Any] = {k: v for k, v in data.items() if k != "ingestion"}
    if "approver_roles" in kwargs:
        kwargs["approver_roles"] = tuple(kwargs["approver_roles"] or ())
    if "config_cache_ttl_seconds" in kwargs:
        kwargs["config_cache_ttl_seconds"] = float(kwargs["config_cache_ttl_seconds"])

    return AccrualSettings(ingestion=IngestionSettings(**ingestion_data), **kwargs)


def load_settings(path: Path) -> AccrualSettings:
    return parse_settings(load_yaml_file(path))
