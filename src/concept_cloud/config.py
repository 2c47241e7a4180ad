"""Configuration helpers for Concept Cloud."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, cast

import yaml


@dataclass
class CanonicalizationConfig:
    """Thresholds and switches for the canonicalization pipeline."""

    similarity_threshold: float = 0.60
    semantic_threshold: float = 0.76
    use_embeddings: bool = False
    embedding_timeout: float = 0.9
    embedding_url: Optional[str] = None
    embedding_model: str = "paraphrase-multilingual-MiniLM-L12-v2"


@dataclass
class PersistenceConfig:
    """Where and how often the aggregate state is written."""

    state_path: Optional[Path] = Path("state.json")
    debounce_seconds: float = 0.5


@dataclass
class IngressConfig:
    """Per-connection flood control."""

    rate_limit: int = 25
    rate_window_seconds: float = 2.5


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    ws_path: str = "/ws"
    heartbeat_seconds: float = 25.0
    max_message_bytes: int = 1_000_000


@dataclass
class ClientConfig:
    """Timing windows used by the client resilience layer."""

    outbox_capacity: int = 50
    optimistic_ack_seconds: float = 0.9
    anti_erasure_window: float = 30.0
    reset_grace_window: float = 12.0
    reconnect_delay: float = 0.6
    reconnect_delay_max: float = 2.5


@dataclass
class AppConfig:
    """Top-level configuration for server and client components."""

    canonicalization: CanonicalizationConfig = field(default_factory=CanonicalizationConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    ingress: IngressConfig = field(default_factory=IngressConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        persistence = dict(data.get("persistence", {}))
        if persistence.get("state_path") is not None:
            persistence["state_path"] = Path(persistence["state_path"])
        return cls(
            canonicalization=CanonicalizationConfig(**data.get("canonicalization", {})),
            persistence=PersistenceConfig(**persistence),
            ingress=IngressConfig(**data.get("ingress", {})),
            server=ServerConfig(**data.get("server", {})),
            client=ClientConfig(**data.get("client", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        state_path = data["persistence"]["state_path"]
        data["persistence"]["state_path"] = None if state_path is None else str(state_path)
        return data

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf8") as handle:
            if path.suffix.lower() in {".yaml", ".yml"}:
                yaml.safe_dump(self.to_dict(), handle, sort_keys=False)
            else:
                json.dump(self.to_dict(), handle, indent=2)


def _load_yaml_or_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf8") as handle:
        text = handle.read()
    if path.suffix.lower() in {".yaml", ".yml"}:
        loaded = yaml.safe_load(text)
        if isinstance(loaded, Mapping):
            return cast(dict[str, Any], dict(loaded))
        if loaded is None:
            return {}
        msg = "Expected mapping at root of YAML configuration"
        raise TypeError(msg)
    loaded_json = json.loads(text)
    if isinstance(loaded_json, dict):
        return cast(dict[str, Any], loaded_json)
    msg = "Expected mapping at root of JSON configuration"
    raise TypeError(msg)


def _merge_dict(base: dict[str, Any], overrides: Iterable[dict[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for override in overrides:
        for key, value in override.items():
            existing = result.get(key)
            if isinstance(value, dict) and isinstance(existing, dict):
                nested = _merge_dict(cast(dict[str, Any], existing), [value])
                result[key] = nested
            else:
                result[key] = value
    return result


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _environment_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if "CONCEPT_CLOUD_USE_EMBEDDINGS" in environ:
        overrides.setdefault("canonicalization", {})["use_embeddings"] = _env_flag(
            environ["CONCEPT_CLOUD_USE_EMBEDDINGS"]
        )
    if environ.get("CONCEPT_CLOUD_EMBEDDING_URL"):
        overrides.setdefault("canonicalization", {})["embedding_url"] = environ["CONCEPT_CLOUD_EMBEDDING_URL"]
    if environ.get("CONCEPT_CLOUD_STATE_PATH"):
        overrides.setdefault("persistence", {})["state_path"] = environ["CONCEPT_CLOUD_STATE_PATH"]
    if environ.get("PORT"):
        overrides.setdefault("server", {})["port"] = int(environ["PORT"])
    return overrides


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Iterable[dict[str, Any]]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load configuration from disk, merge overrides, then apply the environment."""

    overrides = list(overrides or [])
    if path is None:
        base: dict[str, Any] = {}
    else:
        base = _load_yaml_or_json(Path(path))

    environ = os.environ if environ is None else environ
    merged = _merge_dict(base, [*overrides, _environment_overrides(environ)])
    return AppConfig.from_dict(merged)
