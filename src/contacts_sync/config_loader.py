from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml  # type: ignore[import-untyped]


@dataclass
class SheetsConfig:
    spreadsheet_id: str = ""
    sheet_name: str = "Contacts"
    history_sheet: str = "History"
    access_token_env: str = "GOOGLE_SHEETS_ACCESS_TOKEN"
    timeout_seconds: float = 20.0


@dataclass
class StorageConfig:
    dir: str = "."
    snapshot_key: str = "data/contacts.json"
    documents_prefix: str = "Cards/"
    images_prefix: str = "images/"
    blob_store: str = "auto"
    bucket: str = ""
    endpoint_url: str = ""
    region: str = ""
    access_key_env: str = "R2_ACCESS_KEY_ID"
    secret_key_env: str = "R2_SECRET_ACCESS_KEY"


@dataclass
class CacheConfig:
    ttl_seconds: float = 30.0


@dataclass
class MatchingConfig:
    auto_merge_weak: bool = True


@dataclass
class TaggingConfig:
    mapping: Dict[str, str] = field(default_factory=dict)
    uppercase_tokens: List[str] = field(default_factory=list)
    company_rules: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class VerificationConfig:
    email_deliverability: bool = False
    stale_after_days: int = 180


@dataclass
class ExportConfig:
    default_phone_country: str = "TW"


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class SyncConfig:
    backend: str = "auto"
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    tagging: TaggingConfig = field(default_factory=TaggingConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_sync_config(args: Optional[argparse.Namespace] = None) -> SyncConfig:
    args = args or argparse.Namespace()
    config_data = _load_yaml(getattr(args, "config", None))
    sheets_cfg = config_data.get("sheets", {}) or {}
    storage_cfg = config_data.get("storage", {}) or {}
    cache_cfg = config_data.get("cache", {}) or {}
    matching_cfg = config_data.get("matching", {}) or {}
    tags_cfg = config_data.get("tags", {}) or {}
    verification_cfg = config_data.get("verification", {}) or {}
    export_cfg = config_data.get("export", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    sheets = SheetsConfig(
        spreadsheet_id=getattr(args, "spreadsheet_id", None)
        or os.getenv("CONTACTS_SYNC_SPREADSHEET_ID")
        or sheets_cfg.get("spreadsheet_id", ""),
        sheet_name=sheets_cfg.get("sheet_name", "Contacts"),
        history_sheet=sheets_cfg.get("history_sheet", "History") or "",
        access_token_env=sheets_cfg.get("access_token_env", "GOOGLE_SHEETS_ACCESS_TOKEN"),
        timeout_seconds=float(sheets_cfg.get("timeout_seconds", 20.0)),
    )

    storage = StorageConfig(
        dir=getattr(args, "storage_dir", None)
        or os.getenv("CONTACTS_SYNC_STORAGE_DIR")
        or storage_cfg.get("dir")
        or os.getcwd(),
        snapshot_key=storage_cfg.get("snapshot_key", "data/contacts.json"),
        documents_prefix=storage_cfg.get("documents_prefix", "Cards/"),
        images_prefix=storage_cfg.get("images_prefix", "images/"),
        blob_store=getattr(args, "blob_store", None) or storage_cfg.get("blob_store", "auto"),
        bucket=os.getenv("CONTACTS_SYNC_BUCKET") or storage_cfg.get("bucket", ""),
        endpoint_url=storage_cfg.get("endpoint_url", ""),
        region=storage_cfg.get("region", ""),
        access_key_env=storage_cfg.get("access_key_env", "R2_ACCESS_KEY_ID"),
        secret_key_env=storage_cfg.get("secret_key_env", "R2_SECRET_ACCESS_KEY"),
    )

    verification = VerificationConfig(
        email_deliverability=getattr(args, "email_deliverability", None)
        or verification_cfg.get("email_deliverability", False),
        stale_after_days=int(verification_cfg.get("stale_after_days", 180)),
    )

    export = ExportConfig(
        default_phone_country=getattr(args, "default_phone_country", None)
        or export_cfg.get("default_phone_country", "TW"),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()

    return SyncConfig(
        backend=getattr(args, "backend", None) or config_data.get("backend", "auto"),
        sheets=sheets,
        storage=storage,
        cache=CacheConfig(ttl_seconds=float(cache_cfg.get("ttl_seconds", 30.0))),
        matching=MatchingConfig(
            auto_merge_weak=bool(matching_cfg.get("auto_merge_weak", True)),
        ),
        tagging=TaggingConfig(
            mapping=dict(tags_cfg.get("mapping", {}) or {}),
            uppercase_tokens=list(tags_cfg.get("uppercase_tokens", []) or []),
            company_rules=list(config_data.get("company_rules", []) or []),
        ),
        verification=verification,
        export=export,
        logging=LoggingConfig(level=effective_level),
    )


def add_common_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--backend", type=str, default=None, choices=["auto", "sheets", "json"])
    parser.add_argument("--spreadsheet-id", type=str, default=None)
    parser.add_argument("--storage-dir", type=str, default=None)
    parser.add_argument(
        "--blob-store", type=str, default=None, choices=["auto", "local", "s3"]
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    return parser


__all__ = [
    "CacheConfig",
    "ExportConfig",
    "LoggingConfig",
    "MatchingConfig",
    "SheetsConfig",
    "StorageConfig",
    "SyncConfig",
    "TaggingConfig",
    "VerificationConfig",
    "add_common_arguments",
    "load_sync_config",
]
