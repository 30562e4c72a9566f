"""Configuration loading from environment variables and strata.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from strata.memory.scopes import DEFAULT_MAX_DEPTH, ScopeLayout

_CONFIG_FILENAME = "strata.toml"


@dataclass
class ViewThresholds:
    """Token limits deciding how a knowledge log is shown."""

    full: int = 8000
    summary: int = 16000


@dataclass
class MaintenanceConfig:
    """Thresholds for the maintenance report."""

    bloat_token_threshold: int = 8000
    block_token_threshold: int = 16000
    staleness_days: int = 90
    target_tokens: int = 8000
    max_depth: int = DEFAULT_MAX_DEPTH


@dataclass
class WriterConfig:
    """Entry writer and session state limits."""

    warn_threshold: int = 12000
    state_token_limit: int = 2000
    state_staleness_hours: int = 48


@dataclass
class StrataConfig:
    """Top-level configuration."""

    views: ViewThresholds = field(default_factory=ViewThresholds)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    writer: WriterConfig = field(default_factory=WriterConfig)
    layout: ScopeLayout = field(default_factory=ScopeLayout)
    log_level: str = "WARNING"


def load_config(config_path: Path | None = None) -> StrataConfig:
    """Load configuration from environment variables and optional strata.toml.

    Priority: environment variables > strata.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.strata/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".strata" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    views_data = file_data.get("views", {})
    maintenance_data = file_data.get("maintenance", {})
    writer_data = file_data.get("writer", {})
    layout_data = file_data.get("layout", {})

    defaults = ScopeLayout()
    config = StrataConfig(
        views=ViewThresholds(
            full=int(os.getenv("STRATA_FULL_THRESHOLD", views_data.get("full", 8000))),
            summary=int(os.getenv("STRATA_SUMMARY_THRESHOLD", views_data.get("summary", 16000))),
        ),
        maintenance=MaintenanceConfig(
            bloat_token_threshold=int(maintenance_data.get("bloat_token_threshold", 8000)),
            block_token_threshold=int(maintenance_data.get("block_token_threshold", 16000)),
            staleness_days=int(
                os.getenv("STRATA_STALENESS_DAYS", maintenance_data.get("staleness_days", 90))
            ),
            target_tokens=int(maintenance_data.get("target_tokens", 8000)),
            max_depth=int(maintenance_data.get("max_depth", DEFAULT_MAX_DEPTH)),
        ),
        writer=WriterConfig(
            warn_threshold=int(
                os.getenv("STRATA_WARN_THRESHOLD", writer_data.get("warn_threshold", 12000))
            ),
            state_token_limit=int(writer_data.get("state_token_limit", 2000)),
            state_staleness_hours=int(writer_data.get("state_staleness_hours", 48)),
        ),
        layout=ScopeLayout(
            marker_dir=layout_data.get("marker_dir", defaults.marker_dir),
            identity_file=layout_data.get("identity_file", defaults.identity_file),
            knowledge_file=layout_data.get("knowledge_file", defaults.knowledge_file),
            state_file=layout_data.get("state_file", defaults.state_file),
        ),
        log_level=os.getenv("STRATA_LOG_LEVEL", file_data.get("log_level", "WARNING")),
    )
    return config
