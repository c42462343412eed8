"""Configuration management for figfix (figfix.toml parsing + defaults)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

LOCK_SCOPES = ("project", "nodes")


@dataclass
class EngineConfig:
    max_workers: int = 1
    lock_scope: str = "project"


@dataclass
class FixConfig:
    estimated_seconds: float = 2.0
    estimated_seconds_by_type: dict[str, float] = field(default_factory=dict)
    disabled_types: list[str] = field(default_factory=list)

    def estimate_for(self, fix_type: str) -> float:
        return float(self.estimated_seconds_by_type.get(fix_type, self.estimated_seconds))


@dataclass
class StoreConfig:
    encrypt: bool = True
    db_path: str = ""


@dataclass
class HistoryConfig:
    default_limit: int = 20
    max_limit: int = 100


@dataclass
class FigFixConfig:
    """Complete figfix configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    fix: FixConfig = field(default_factory=FixConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)


def load_config(workspace: Path | None = None) -> FigFixConfig:
    """Load configuration from figfix.toml if present, otherwise return defaults."""
    config = FigFixConfig()

    if workspace is None:
        workspace = Path.cwd()

    config_file = workspace / "figfix.toml"
    if not config_file.exists():
        return config

    with open(config_file, "rb") as f:
        data = tomllib.load(f)

    if "engine" in data:
        e = data["engine"]
        if "max_workers" in e:
            config.engine.max_workers = max(1, int(e["max_workers"]))
        if "lock_scope" in e:
            scope = e["lock_scope"]
            if scope not in LOCK_SCOPES:
                raise ValueError(f"engine.lock_scope must be one of {LOCK_SCOPES}, got {scope!r}")
            config.engine.lock_scope = scope

    if "fix" in data:
        fx = data["fix"]
        if "estimated_seconds" in fx:
            config.fix.estimated_seconds = float(fx["estimated_seconds"])
        if "disabled_types" in fx:
            config.fix.disabled_types = list(fx["disabled_types"])
        by_type = fx.get("estimated_seconds_by_type", {})
        for name, seconds in by_type.items():
            config.fix.estimated_seconds_by_type[name] = float(seconds)

    if "store" in data:
        s = data["store"]
        for attr in ("encrypt", "db_path"):
            if attr in s:
                setattr(config.store, attr, s[attr])

    if "history" in data:
        h = data["history"]
        for attr in ("default_limit", "max_limit"):
            if attr in h:
                setattr(config.history, attr, int(h[attr]))

    return config


def get_figfix_dir(workspace: Path | None = None) -> Path:
    """Get or create the .figfix directory."""
    if workspace is None:
        workspace = Path.cwd()
    figfix_dir = workspace / ".figfix"
    figfix_dir.mkdir(parents=True, exist_ok=True)
    return figfix_dir
