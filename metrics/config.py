from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from metrics.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = REPO_ROOT / "config" / "work_items.yaml"

DEFAULT_START_STATES = ("New",)
DEFAULT_END_STATES = ("Closed",)


@dataclass(frozen=True)
class WorkItemTypeConfig:
    work_item_type: str
    start_states: List[str]
    end_states: List[str]
    group_by_field: Optional[str] = None


@dataclass(frozen=True)
class WorkItemFilterConfig:
    """A user-facing filter label backed by one or more work item fields."""

    label: str
    fields: List[str]


@dataclass(frozen=True)
class WorkItemsConfig:
    types: Dict[str, WorkItemTypeConfig] = field(default_factory=dict)
    filters: List[WorkItemFilterConfig] = field(default_factory=list)

    def for_type(self, work_item_type: str) -> Optional[WorkItemTypeConfig]:
        return self.types.get(work_item_type)


def _states(raw: Any, default: tuple, where: str) -> List[str]:
    if raw is None:
        return list(default)
    if isinstance(raw, str):
        return [raw]
    if not isinstance(raw, list) or not all(isinstance(s, str) for s in raw):
        raise ConfigurationError(f"{where} must be a list of state names")
    return list(raw)


def parse_work_items_config(data: Optional[Dict[str, Any]]) -> WorkItemsConfig:
    if not data:
        return WorkItemsConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("work item config must be a mapping")

    raw_types = data.get("work_items") or {}
    if not isinstance(raw_types, dict):
        raise ConfigurationError("work_items must be a mapping of type name to settings")

    types: Dict[str, WorkItemTypeConfig] = {}
    for name, entry in raw_types.items():
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ConfigurationError(f"work_items.{name} must be a mapping")
        group_by = entry.get("group_by_field")
        if group_by is not None and not isinstance(group_by, str):
            raise ConfigurationError(f"work_items.{name}.group_by_field must be a string")
        types[name] = WorkItemTypeConfig(
            work_item_type=name,
            start_states=_states(
                entry.get("start_states"), DEFAULT_START_STATES, f"work_items.{name}.start_states"
            ),
            end_states=_states(
                entry.get("end_states"), DEFAULT_END_STATES, f"work_items.{name}.end_states"
            ),
            group_by_field=group_by,
        )

    raw_filters = data.get("filter_work_items_by") or []
    if not isinstance(raw_filters, list):
        raise ConfigurationError("filter_work_items_by must be a list")

    filters: List[WorkItemFilterConfig] = []
    for i, entry in enumerate(raw_filters):
        if not isinstance(entry, dict) or "label" not in entry:
            raise ConfigurationError(f"filter_work_items_by[{i}] needs a label")
        fields = entry.get("fields") or []
        if isinstance(fields, str):
            fields = [fields]
        if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
            raise ConfigurationError(f"filter_work_items_by[{i}].fields must be a list of field names")
        filters.append(WorkItemFilterConfig(label=str(entry["label"]), fields=list(fields)))

    return WorkItemsConfig(types=types, filters=filters)


def load_work_items_config(path: Optional[Path] = None) -> WorkItemsConfig:
    """
    Load work item type configuration from YAML.

    Resolution order: explicit `path`, WORK_ITEM_CONFIG env var, then
    config/work_items.yaml in the repo. A missing file yields an empty config.
    """
    if path is None:
        env_path = os.getenv("WORK_ITEM_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Work item config not found at {path}, using defaults")
        return WorkItemsConfig()

    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {path}: {e}") from e
    return parse_work_items_config(data)
