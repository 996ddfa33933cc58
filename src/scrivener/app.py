"""Command-line entry point: settings, logging and the terminal session."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings
from .ai.generation_service import OpenAIGenerationService
from .editor.document_model import TextDocument
from .services.settings import Settings, SettingsStore, redact_secret
from .ui.events import EventBus
from .ui.terminal import TerminalSession
from .utils import logging as logging_utils
from .workflow.controller import WorkflowController
from .workflow.session_adapter import GenerationSessionAdapter

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    # stdout belongs to the terminal session
    log_path = logging_utils.setup_logging(level, console=False, force=force)
    _LOGGER.debug("Logging to %s at %s", log_path, logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Read settings through ``store``, falling back to defaults on failure."""

    store = store or SettingsStore(path)
    try:
        return store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover
        _LOGGER.warning("Using default settings; %s could not be loaded: %s", store.path, exc)
        return Settings()


def build_controller(
    settings: Settings,
    client: AIClient,
    document: TextDocument,
    *,
    event_bus: EventBus | None = None,
) -> WorkflowController:
    """Assemble service, session adapter and controller for ``document``."""

    service = OpenAIGenerationService(
        client,
        temperature=settings.temperature,
        max_completion_tokens=settings.max_completion_tokens,
        ensure_leading_space=settings.ensure_leading_space,
    )
    controller = WorkflowController(
        GenerationSessionAdapter(service),
        document=document,
        event_bus=event_bus or EventBus(),
        allow_partial_regenerate=settings.allow_partial_regenerate,
    )
    controller.sync_from_document()
    return controller


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point of the ``scrivener`` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("SCRIVENER_DEBUG")
    configure_logging(debug)

    location = args.settings_path or os.environ.get("SCRIVENER_SETTINGS_PATH")
    settings_path = Path(location).expanduser() if location else None
    store = SettingsStore(settings_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    settings = load_settings(settings_path, store=store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return
    if settings.debug_logging and not debug:
        debug = True
        configure_logging(True, force=True)

    try:
        document = TextDocument.from_path(args.file) if args.file else TextDocument()
    except OSError as exc:
        print(f"Unable to open {args.file}: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    client = _build_ai_client(settings, debug_logging=debug)
    if client is None:
        print("The AI client could not be configured; see the log for details.", file=sys.stderr)
        raise SystemExit(1)

    session = TerminalSession(build_controller(settings, client, document), document)
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(session.run())
    except KeyboardInterrupt:  # pragma: no cover
        _LOGGER.info("Interrupted; stopping.")
        session.close()
    finally:
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(_shutdown_ai_client(client))
        _drain_event_loop(loop)
        loop.close()


def _env_flag(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    return default if raw is None else raw.strip().lower() in _TRUE_VALUES


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel leftover tasks, then close async generators and the executor."""

    if loop.is_closed():
        return

    async def _finish() -> None:
        me = asyncio.current_task()
        leftovers = [task for task in asyncio.all_tasks() if task is not me and not task.done()]
        if leftovers:
            _LOGGER.debug("Cancelling %d leftover task(s) at exit.", len(leftovers))
            for task in leftovers:
                task.cancel()
            await asyncio.gather(*leftovers, return_exceptions=True)
        await loop.shutdown_asyncgens()
        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_default_executor()

    try:
        loop.run_until_complete(_finish())
    except RuntimeError as exc:  # pragma: no cover
        _LOGGER.debug("Event loop could not be drained: %s", exc)


async def _shutdown_ai_client(client: AIClient | None) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as exc:  # pragma: no cover
        _LOGGER.debug("Ignoring error while closing the AI client: %s", exc)


def _build_ai_client(settings: Settings, *, debug_logging: bool = False) -> AIClient | None:
    """Return an :class:`AIClient` for ``settings`` or ``None`` when the SDK rejects them."""

    shared = {
        name: getattr(settings, name)
        for name in (
            "base_url",
            "api_key",
            "model",
            "organization",
            "request_timeout",
            "max_retries",
            "retry_min_seconds",
            "retry_max_seconds",
            "default_headers",
            "metadata",
        )
    }
    try:
        return AIClient(ClientSettings(**shared, debug_logging=debug_logging or settings.debug_logging))
    except Exception as exc:  # pragma: no cover
        _LOGGER.warning("AI client unavailable: %s", exc)
        return None


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="scrivener",
        description="Continue a text document with reviewable AI suggestions.",
    )
    parser.add_argument("--file", metavar="PATH", help="Start from the contents of a UTF-8 text file.")
    parser.add_argument(
        "--settings",
        dest="settings_path",
        metavar="PATH",
        help="Settings file to use instead of ~/.scrivener/settings.json.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override one setting for this run; may be given several times.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings as JSON (API key masked) and exit.",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into typed :class:`Settings` values.

    Raises ``ValueError`` for unknown keys, malformed entries and values that
    do not fit the field's type.
    """

    hints = get_type_hints(Settings)
    overrides: Dict[str, Any] = {}
    for item in items:
        key, separator, raw = item.partition("=")
        key = key.strip()
        if not separator:
            raise ValueError(f"Override '{item}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in hints:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(hints[key], raw.strip())
    return overrides


def _coerce_value(annotation: Any, raw: str) -> Any:
    optional = type(None) in get_args(annotation)
    if optional and raw.lower() in {"none", "null"}:
        return None
    target = _base_type(annotation)
    if target is dict:
        try:
            parsed = json.loads(raw or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(parsed, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return parsed
    parser = _SCALAR_PARSERS.get(target)
    return parser(raw) if parser else raw


def _base_type(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is dict:
        return dict
    if origin is None:
        return annotation
    concrete = [arg for arg in get_args(annotation) if arg is not type(None)]
    return concrete[0] if concrete else origin


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


_SCALAR_PARSERS: Mapping[Any, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: lambda raw: int(raw, 10),
    float: float,
    str: str,
}


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    values = asdict(settings)
    values["api_key"] = redact_secret(settings.api_key)
    report = {
        "settings": values,
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.name,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(name for name in os.environ if name.startswith("SCRIVENER_")),
        },
    }
    out = stream or sys.stdout
    out.write(json.dumps(report, indent=2) + "\n")


if __name__ == "__main__":  # pragma: no cover
    main()
