"""Command line interface for Concept Cloud."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .canonicalizer import Canonicalizer
from .config import load_config
from .data import load_calibration_pairs
from .diagnostics import LabeledPair, ThresholdSweep
from .errors import PersistenceError
from .logging import configure_logging, get_logger
from .persistence import StateFile
from .store import AggregateStore
from .utils.io import load_json

LOGGER = get_logger(__name__)

CONFIG_OPTION = typer.Option(None, "--config", help="Path to a YAML or JSON configuration file.")
HOST_OPTION = typer.Option(None, help="Interface to bind (overrides configuration).")
PORT_OPTION = typer.Option(None, help="Port to bind (overrides configuration).")
STATE_PATH_OPTION = typer.Option(None, help="Where aggregate state is persisted.")
EMBEDDINGS_OPTION = typer.Option(None, "--embeddings/--no-embeddings", help="Toggle semantic matching.")
NAMESPACE_OPTION = typer.Option("q1", help="Prompt namespace to resolve into.")
PAIRS_ARGUMENT = typer.Argument(None, help="JSON list of {left, right, same} pairs; bundled sample by default.")
OUTPUT_OPTION = typer.Option(None, help="Optional path to write the calibration report.")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")

app = typer.Typer(help="Live survey answer clustering and synchronization.")


@app.callback()
def main(verbose: bool = VERBOSE_OPTION) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO)


@app.command()
def serve(
    config_path: Optional[Path] = CONFIG_OPTION,
    host: Optional[str] = HOST_OPTION,
    port: Optional[int] = PORT_OPTION,
    state_path: Optional[Path] = STATE_PATH_OPTION,
    embeddings: Optional[bool] = EMBEDDINGS_OPTION,
) -> None:
    """Run the WebSocket server until interrupted."""

    from .server import run

    overrides: dict = {"server": {}, "persistence": {}, "canonicalization": {}}
    if host is not None:
        overrides["server"]["host"] = host
    if port is not None:
        overrides["server"]["port"] = port
    if state_path is not None:
        overrides["persistence"]["state_path"] = str(state_path)
    if embeddings is not None:
        overrides["canonicalization"]["use_embeddings"] = embeddings
    config = load_config(config_path, [overrides])
    run(config)


@app.command()
def canonicalize(
    texts: List[str] = typer.Argument(..., help="Answers to resolve, in submission order."),
    namespace: str = NAMESPACE_OPTION,
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Resolve answers against a fresh store and print the canonical keys."""

    config = load_config(config_path)
    store = AggregateStore(Canonicalizer.from_config(config.canonicalization))
    if namespace not in store.namespaces:
        raise typer.BadParameter(f"Unknown namespace {namespace!r}; expected one of {store.namespaces}")

    async def _resolve() -> None:
        try:
            for text in texts:
                resolution = await store.resolve_and_increment_detailed(namespace, text)
                if resolution is None:
                    typer.echo(f"{text!r} -> (empty)")
                else:
                    typer.echo(f"{text!r} -> {resolution.key} [{resolution.via}]")
        finally:
            await store.canonicalizer.close()

    asyncio.run(_resolve())
    typer.echo(json.dumps(store.snapshot("cli").to_payload()[namespace], ensure_ascii=False, indent=2))


@app.command()
def calibrate(
    pairs_path: Optional[Path] = PAIRS_ARGUMENT,
    output: Optional[Path] = OUTPUT_OPTION,
) -> None:
    """Sweep similarity thresholds over labelled pairs."""

    raw = load_calibration_pairs() if pairs_path is None else load_json(pairs_path)
    if not isinstance(raw, list):
        raise typer.BadParameter("Expected a JSON list of pairs")
    result = ThresholdSweep().run(LabeledPair.from_mapping(item) for item in raw)
    typer.echo(json.dumps(result.to_dict(), indent=2))
    if output is not None:
        result.to_json(output)
        LOGGER.info("Wrote calibration report to %s", output)


@app.command("inspect-state")
def inspect_state(path: Path = typer.Argument(..., help="Persisted state file.")) -> None:
    """Print a persisted state file as a ranked snapshot."""

    try:
        record = StateFile(path).load()
    except PersistenceError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    if record is None:
        typer.echo(f"No state at {path}", err=True)
        raise typer.Exit(code=1)
    store = AggregateStore()
    store.load_record(record)
    typer.echo(json.dumps(store.snapshot("inspect").to_payload(), ensure_ascii=False, indent=2))


if __name__ == "__main__":  # pragma: no cover
    app()
