from __future__ import annotations

from pathlib import Path

import pytest

from concept_cloud.config import AppConfig, load_config


def test_defaults() -> None:
    config = AppConfig()
    assert config.canonicalization.similarity_threshold == 0.60
    assert config.canonicalization.semantic_threshold == 0.76
    assert config.canonicalization.use_embeddings is False
    assert config.ingress.rate_limit == 25
    assert config.persistence.debounce_seconds == 0.5
    assert config.client.outbox_capacity == 50


@pytest.mark.parametrize("suffix", [".yaml", ".json"])
def test_save_and_load_round_trip(workspace: Path, suffix: str) -> None:
    config = AppConfig()
    config.server.port = 4100
    config.persistence.state_path = workspace / "data" / "state.json"
    path = workspace / f"config{suffix}"
    config.save(path)

    loaded = load_config(path, environ={})
    assert loaded.server.port == 4100
    assert loaded.persistence.state_path == workspace / "data" / "state.json"


def test_overrides_then_environment(workspace: Path) -> None:
    loaded = load_config(
        overrides=[{"server": {"port": 5000, "host": "127.0.0.1"}, "canonicalization": {"use_embeddings": True}}],
        environ={
            "PORT": "8080",
            "CONCEPT_CLOUD_USE_EMBEDDINGS": "off",
            "CONCEPT_CLOUD_EMBEDDING_URL": "http://localhost:9000/embed",
            "CONCEPT_CLOUD_STATE_PATH": str(workspace / "live.json"),
        },
    )
    assert loaded.server.port == 8080
    assert loaded.server.host == "127.0.0.1"
    assert loaded.canonicalization.use_embeddings is False
    assert loaded.canonicalization.embedding_url == "http://localhost:9000/embed"
    assert loaded.persistence.state_path == workspace / "live.json"


def test_non_mapping_config_is_rejected(workspace: Path) -> None:
    path = workspace / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf8")
    with pytest.raises(TypeError):
        load_config(path, environ={})
