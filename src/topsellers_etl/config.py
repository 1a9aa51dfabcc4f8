from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


DEFAULT_TABLES = {
    "history": "steam_topsellers_history_region",
    "current": "steam_topsellers_current_region",
    "pages": "steam_topsellers_pages_region",
    "rank_stats": "steam_topsellers_rank_stats_region",
    "master_timestamps": "ccu_master_timestamps",
    "reconciled": "ccu_reconciled",
}


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def listing(self) -> Dict[str, Any]:
        return self.raw["listing"]

    @property
    def fetch(self) -> Dict[str, Any]:
        return self.raw.get("fetch", {})

    @property
    def partition_groups(self) -> List[List[str]]:
        groups = self.raw["partitions"]["groups"]
        return [[str(cc) for cc in group] for group in groups]

    @property
    def all_partitions(self) -> List[str]:
        return [cc for group in self.partition_groups for cc in group]

    @property
    def schedule(self) -> Dict[str, Any]:
        return self.raw.get("schedule", {"policy": "rotating_group", "interval_minutes": 10})

    @property
    def snapshot(self) -> Dict[str, Any]:
        return self.raw.get("snapshot", {})

    @property
    def storage(self) -> Dict[str, Any]:
        return self.raw.get("storage", {"backend": "supabase", "schema": "analytics"})

    @property
    def metrics(self) -> Dict[str, Any]:
        return self.raw.get("metrics", {"enabled": False})

    @property
    def compare(self) -> Dict[str, Any]:
        return self.raw.get("compare", {})

    @property
    def tables(self) -> Dict[str, str]:
        tables = dict(DEFAULT_TABLES)
        tables.update(self.raw.get("tables", {}))
        return tables


def load_config(path: str = "config.yaml") -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if "listing" not in raw or "base_url" not in raw["listing"]:
        raise ConfigError("listing.base_url is required")
    groups = raw.get("partitions", {}).get("groups")
    if not groups or not all(groups):
        raise ConfigError("partitions.groups must be a non-empty list of non-empty groups")
    return Config(raw)


def load_env(path: Optional[str] = None) -> None:
    load_dotenv(path)


def get_supabase_credentials() -> Tuple[str, str]:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE") or os.getenv("SUPABASE_SECRET_KEY")
    if not url or not key:
        raise ConfigError("Missing storage credentials; set SUPABASE_URL and SUPABASE_SERVICE_ROLE")
    return url, key


def get_source_token() -> Optional[str]:
    return os.getenv("SOURCE_API_KEY") or None
