"""Configuration management for PKB."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG = {
    "db_path": "~/.pkb/knowledge-base.db",
    "chroma_path": "~/.pkb/chroma",
    "vector_backend": "memory",  # memory | chromadb
    "chroma": {"host": None, "port": 8000, "collection": "documents"},
    "embedding_model": "sentence-transformers/all-MiniLM-L6-v2",
    "embeddings": {"enabled": True, "dimension": 384, "max_chars": 8192},
    "claude_model": "claude-sonnet-4-20250514",
    "chunking": {"chunk_size": 1000, "overlap_words": 200},
    "indexing": {"max_concurrent_processing": 5, "watch_debounce": 1.0},
    "enrichment": {"slice_chars": 10000, "related_weight_delta": 0.5, "max_tokens": 1000},
    "search": {"snippet_length": 200},
    "logging": {"level": "INFO"},
}

PATH_KEYS = ("db_path", "chroma_path")


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".pkb" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file, env vars and explicit overrides."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
        _deep_merge(cfg, file_cfg)

    if overrides:
        _deep_merge(cfg, overrides)

    # Env overrides
    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        cfg.setdefault("claude_api_key", api_key)

    return expand_paths(cfg)


def expand_paths(cfg: dict[str, Any]) -> dict[str, Any]:
    for key in PATH_KEYS:
        if cfg.get(key):
            cfg[key] = str(Path(cfg[key]).expanduser().resolve())
    return cfg


def build_config(**overrides: Any) -> dict[str, Any]:
    """Defaults plus overrides, without touching config files or the environment."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    _deep_merge(cfg, overrides)
    return expand_paths(cfg)


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
