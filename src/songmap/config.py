"""
Configuration loading for SongMap.

Settings come from three layers, later ones winning:
1. dataclass defaults
2. ``configs/config.yaml`` (or the file named by ``SONGMAP_CONFIG``)
3. environment variables (``.env`` is loaded first via python-dotenv)
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from songmap.errors import InvalidArgumentError
from songmap.ranking.weights import RankWeights

DEFAULT_CONFIG_PATH = "configs/config.yaml"

HISTORY_BACKENDS = ("sqlite", "redis")
GRAPH_BACKENDS = ("sqlite", "neo4j")


@dataclass(frozen=True)
class HistorySettings:
    limit: int = 100
    backend: str = "sqlite"
    path: str = "data/cache/history.db"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "history:graph:"


@dataclass(frozen=True)
class GraphSettings:
    backend: str = "sqlite"
    path: str = "data/cache/songmap.db"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: Optional[str] = None
    neo4j_database: Optional[str] = None
    template_namespace: str = "base_Song"
    template_edge_seed: int = 1
    tag_attempts: int = 3


@dataclass(frozen=True)
class RetrySettings:
    attempts: int = 3
    wait_min: float = 0.2
    wait_max: float = 5.0


@dataclass(frozen=True)
class Settings:
    history: HistorySettings = field(default_factory=HistorySettings)
    graph: GraphSettings = field(default_factory=GraphSettings)
    ranking: RankWeights = field(default_factory=RankWeights)
    retry: RetrySettings = field(default_factory=RetrySettings)
    store_timeout: float = 5.0


# env var -> (section, key, caster)
_ENV_OVERRIDES = {
    "SONGMAP_HISTORY_LIMIT": ("history", "limit", int),
    "SONGMAP_HISTORY_BACKEND": ("history", "backend", str),
    "SONGMAP_HISTORY_PATH": ("history", "path", str),
    "REDIS_URL": ("history", "redis_url", str),
    "SONGMAP_GRAPH_BACKEND": ("graph", "backend", str),
    "SONGMAP_GRAPH_PATH": ("graph", "path", str),
    "NEO4J_URI": ("graph", "neo4j_uri", str),
    "NEO4J_USER": ("graph", "neo4j_user", str),
    "NEO4J_PASSWORD": ("graph", "neo4j_password", str),
    "NEO4J_DATABASE": ("graph", "neo4j_database", str),
    "SONGMAP_RETRY_ATTEMPTS": ("retry", "attempts", int),
    "SONGMAP_STORE_TIMEOUT": (None, "store_timeout", float),
}


def _section(cls, raw: Optional[Dict[str, Any]], name: str):
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in config section '{name}': {sorted(unknown)}")
    return cls(**{k: v for k, v in raw.items() if k in known})


def _apply_env(settings: Settings, environ) -> Settings:
    for env_key, (section, key, caster) in _ENV_OVERRIDES.items():
        raw = environ.get(env_key)
        if raw is None or raw == "":
            continue
        try:
            value = caster(raw)
        except ValueError:
            raise InvalidArgumentError(f"Environment variable {env_key}={raw!r} is not a valid {caster.__name__}")
        if section is None:
            settings = replace(settings, **{key: value})
        else:
            settings = replace(settings, **{section: replace(getattr(settings, section), **{key: value})})
    return settings


def validate_settings(settings: Settings) -> Settings:
    if settings.history.limit < 1:
        raise InvalidArgumentError(f"history.limit must be positive, got {settings.history.limit}")
    if settings.history.backend not in HISTORY_BACKENDS:
        raise InvalidArgumentError(f"Unknown history backend: {settings.history.backend}")
    if settings.graph.backend not in GRAPH_BACKENDS:
        raise InvalidArgumentError(f"Unknown graph backend: {settings.graph.backend}")
    if settings.retry.attempts < 1:
        raise InvalidArgumentError("retry.attempts must be at least 1")
    if settings.graph.tag_attempts < 1:
        raise InvalidArgumentError("graph.tag_attempts must be at least 1")
    if settings.store_timeout <= 0:
        raise InvalidArgumentError("store_timeout must be positive")
    return settings


def load_settings(path: str | Path | None = None, environ=None) -> Settings:
    """
    Load settings from YAML and the environment.

    Args:
        path: YAML file; defaults to ``$SONGMAP_CONFIG`` or ``configs/config.yaml``.
              A missing default file is not an error.
        environ: Mapping used for overrides (defaults to ``os.environ``)

    Returns:
        Validated Settings
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    explicit = path is not None or environ.get("SONGMAP_CONFIG")
    cfg_path = Path(path or environ.get("SONGMAP_CONFIG") or DEFAULT_CONFIG_PATH)

    raw: Dict[str, Any] = {}
    if cfg_path.exists():
        with open(cfg_path) as f:
            raw = yaml.safe_load(f) or {}
        logger.debug(f"Loaded config from {cfg_path}")
    elif explicit:
        raise InvalidArgumentError(f"Config file not found: {cfg_path}")

    settings = Settings(
        history=_section(HistorySettings, raw.get("history"), "history"),
        graph=_section(GraphSettings, raw.get("graph"), "graph"),
        ranking=_section(RankWeights, raw.get("ranking"), "ranking"),
        retry=_section(RetrySettings, raw.get("retry"), "retry"),
        store_timeout=float(raw.get("store_timeout", Settings.store_timeout)),
    )
    return validate_settings(_apply_env(settings, environ))
