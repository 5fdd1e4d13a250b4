"""Command line interface for the rigcat package."""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import List, Optional

import typer

from .config import RigConfig, load_config
from .controller import RadioController
from .errors import RigError
from .events import RadioState
from .registry import default_registry
from .session import SessionRecorder, load_session, replay_session

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]}, help="CAT radio control utilities.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_config(
    config_path: Optional[Path],
    driver: Optional[str],
    port: Optional[str],
    baudrate: Optional[int],
    override: Optional[List[str]],
) -> RigConfig:
    overrides = list(override or [])
    if driver:
        overrides.append(f"driver={driver}")
    if port:
        overrides.append(f"port={port}")
    if baudrate:
        overrides.append(f"baudrate={baudrate}")
    try:
        return load_config(config_path, overrides)
    except RigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _describe(state: RadioState) -> str:
    parts = [
        f"freq={state.freq_hz if state.freq_hz is not None else '?'}",
        f"mode={state.mode or '?'}",
        f"ptt={'TX' if state.ptt else 'RX' if state.ptt is not None else '?'}",
    ]
    for channel in ("smeter", "swr", "po", "vd", "id"):
        meter = getattr(state, channel)
        if meter.raw is None:
            continue
        if meter.value is None:
            parts.append(f"{channel}={meter.raw}")
        else:
            parts.append(f"{channel}={meter.value:.2f}{meter.unit or ''}")
    return " ".join(parts)


@app.command("drivers")
def list_drivers() -> None:
    """List the registered radio drivers."""

    for driver_id, meta in default_registry().list():
        address = f" addr={meta.default_address}" if meta.needs_address else ""
        bauds = ",".join(str(baud) for baud in meta.allowed_bauds)
        typer.echo(f"{driver_id:<14} {meta.label} (default {meta.default_baud} baud; {bauds}){address}")


@app.command()
def monitor(
    driver: Optional[str] = typer.Option(None, "--driver", "-d", help="Driver id, see 'rigcat drivers'."),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Line speed (driver default when omitted)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON config file."),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set poll_interval_ms=500 --set driver_options.address=94",
    ),
    interval_ms: Optional[int] = typer.Option(None, "--interval", help="Poll interval in milliseconds."),
    duration: float = typer.Option(0.0, "--duration", help="Stop after N seconds (0 = until Ctrl+C)."),
    record: Optional[Path] = typer.Option(None, "--record", help="Write a session file on exit."),
    trace: bool = typer.Option(False, "--trace", help="Print TX/RX traces."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Connect, poll the radio and print state changes."""

    _configure_logging(verbose)
    cfg = _resolve_config(config_path, driver, port, baudrate, override)
    controller = RadioController(runtime=cfg.serial)
    recorder: Optional[SessionRecorder] = None
    if record is not None:
        recorder = SessionRecorder(cfg.driver, baudrate=cfg.baudrate, port=cfg.port)
        controller.add_tap(recorder)
    lost = threading.Event()
    last_line: List[str] = [""]

    def on_update(state: RadioState) -> None:
        line = _describe(state)
        if line != last_line[0]:
            last_line[0] = line
            typer.echo(line)

    def on_error(error: Exception) -> None:
        typer.echo(f"[error] {error}", err=True)

    controller.on("update", on_update)
    controller.on("error", on_error)
    controller.on("disconnected", lambda _info: lost.set())
    if trace:
        controller.on("log", typer.echo)
    try:
        controller.connect(cfg.driver, cfg.port, cfg.baudrate, cfg.driver_options)
    except RigError as exc:
        typer.echo(f"Connect failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if recorder is not None:
        recorder.session.baudrate = cfg.baudrate or controller.registry.meta(cfg.driver).default_baud
    controller.start_polling(interval_ms or cfg.poll_interval_ms)
    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        while not lost.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                break
            lost.wait(0.2)
    except KeyboardInterrupt:
        logger.info("Stopping monitor (Ctrl+C)")
    finally:
        controller.disconnect()
        if recorder is not None and record is not None:
            path = recorder.save(record)
            typer.echo(f"Session written to {path} ({len(recorder.session.records)} records)")


@app.command()
def replay(
    session_path: Path = typer.Argument(..., exists=True, readable=True, help="Recorded session JSON."),
    csv_out: Optional[Path] = typer.Option(None, "--csv", help="Export decoded events as CSV."),
    strict: bool = typer.Option(False, "--strict", help="Fail when a core event kind is never seen."),
) -> None:
    """Decode a recorded session offline and summarise what it contains."""

    try:
        session = load_session(session_path)
        report = replay_session(session)
    except RigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(report.summary())
    if csv_out is not None:
        csv_out.parent.mkdir(parents=True, exist_ok=True)
        report.to_frame().to_csv(csv_out, index=False)
        typer.echo(f"Events written to {csv_out}")
    if strict and report.missing:
        raise typer.Exit(code=1)


@app.command()
def send(
    payload: str = typer.Argument(..., help="Hex bytes to transmit, e.g. 'FE FE 94 E0 03 FD'."),
    driver: Optional[str] = typer.Option(None, "--driver", "-d", help="Driver id."),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device."),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Line speed."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON config file."),
    wait: float = typer.Option(0.5, "--wait", help="Seconds to listen for a reply."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Send one raw command and print what comes back."""

    _configure_logging(verbose)
    cfg = _resolve_config(config_path, driver, port, baudrate, None)
    controller = RadioController(runtime=cfg.serial)
    controller.on("log", typer.echo)
    try:
        controller.connect(cfg.driver, cfg.port, cfg.baudrate, cfg.driver_options)
        controller.send_raw(payload)
        time.sleep(max(wait, 0.0))
        typer.echo(_describe(controller.state))
    except RigError as exc:
        typer.echo(f"Failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        controller.disconnect()


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
