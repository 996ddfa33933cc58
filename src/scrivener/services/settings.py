"""Persisted user settings for the writing assistant.

Settings live in a JSON document (``~/.scrivener/settings.json`` by default).
The API key never touches disk in clear text: it is stored as a Fernet token
under ``api_key_ciphertext`` and the key material sits next to the settings
file. Values are layered as ``file < CLI overrides < SCRIVENER_* environment``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Tuple

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

CONFIG_HOME = Path.home() / ".scrivener"
SCHEMA_VERSION = 1
CIPHERTEXT_KEY = "api_key_ciphertext"
TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})


def _truthy(raw: str) -> bool:
    return raw.strip().lower() in TRUTHY


# env var -> (field, parser); parsers raise ValueError on junk input
ENVIRONMENT_FIELDS: Mapping[str, Tuple[str, Callable[[str], Any]]] = {
    "SCRIVENER_API_KEY": ("api_key", str),
    "SCRIVENER_BASE_URL": ("base_url", str),
    "SCRIVENER_MODEL": ("model", str),
    "SCRIVENER_ORGANIZATION": ("organization", str),
    "SCRIVENER_DEBUG_LOGGING": ("debug_logging", _truthy),
    "SCRIVENER_ALLOW_PARTIAL_REGENERATE": ("allow_partial_regenerate", _truthy),
    "SCRIVENER_ENSURE_LEADING_SPACE": ("ensure_leading_space", _truthy),
    "SCRIVENER_TEMPERATURE": ("temperature", float),
    "SCRIVENER_REQUEST_TIMEOUT": ("request_timeout", float),
    "SCRIVENER_MAX_COMPLETION_TOKENS": ("max_completion_tokens", int),
    "SCRIVENER_MAX_RETRIES": ("max_retries", int),
}


@dataclass(slots=True)
class Settings:
    """Connection, sampling and workflow options for a session."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_completion_tokens: int = 150
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    debug_logging: bool = False
    allow_partial_regenerate: bool = True
    ensure_leading_space: bool = True


def _field_names() -> frozenset[str]:
    return frozenset(item.name for item in fields(Settings))


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON, encrypting the API key."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or CONFIG_HOME / "settings.json"
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Return the effective settings.

        Stored values are read first; files written by an older layout (wrong
        ``version`` or a clear-text ``api_key``) are rewritten in place. CLI
        ``overrides`` and then ``SCRIVENER_*`` variables are layered on top.
        """

        document = self._read_document()
        settings, stale = self._decode(document)
        if stale:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover
                LOGGER.warning("Could not rewrite %s in the current layout: %s", self._path, exc)

        if overrides:
            settings = _layer(settings, overrides, origin="CLI")
        return _layer(settings, _environment_values(), origin="environment")

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically and return the target path."""

        document = asdict(settings)
        token = self._seal(document.pop("api_key", "") or "")
        if token:
            document[CIPHERTEXT_KEY] = token
        document["version"] = SCHEMA_VERSION

        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_suffix(".tmp")
        staging.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        staging.replace(self._path)
        LOGGER.debug("Wrote settings to %s", self._path)
        return self._path

    def _read_document(self) -> Dict[str, Any]:
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring malformed settings file %s: %s", self._path, exc)
            return {}
        if not isinstance(document, dict):
            LOGGER.warning("Ignoring settings file %s: top level is not an object", self._path)
            return {}
        return document

    def _decode(self, document: Dict[str, Any]) -> tuple[Settings, bool]:
        if not document:
            return Settings(), False

        api_key, stale = self._unseal(document.get(CIPHERTEXT_KEY), document.get("api_key"))
        known = _field_names() - {"api_key"}
        values = {name: value for name, value in document.items() if name in known}
        try:
            settings = Settings(**values)
        except TypeError as exc:
            LOGGER.warning("Discarding unusable settings values: %s", exc)
            settings = Settings()
        if api_key:
            settings = replace(settings, api_key=api_key)
        return settings, stale or document.get("version") != SCHEMA_VERSION

    def _seal(self, api_key: str) -> str | None:
        if not api_key:
            return None
        try:
            return self._vault.encrypt(api_key)
        except (OSError, ValueError) as exc:  # pragma: no cover
            LOGGER.warning("API key not stored; encryption failed: %s", exc)
            return None

    def _unseal(self, token: str | None, clear_text: str | None) -> tuple[str, bool]:
        """Return ``(api_key, needs_rewrite)`` for the stored key fields."""

        if token:
            try:
                return self._vault.decrypt(token), False
            except ValueError as exc:
                LOGGER.warning("Stored API key could not be decrypted: %s", exc)
                return "", False
        if clear_text:
            LOGGER.info("Moving clear-text API key into encrypted storage.")
            return clear_text, True
        return "", False


def _environment_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for variable, (name, parse) in ENVIRONMENT_FIELDS.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            values[name] = parse(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", variable, raw, parse.__name__)
    return values


def _layer(settings: Settings, values: Mapping[str, Any], *, origin: str) -> Settings:
    known = _field_names()
    accepted = {name: value for name, value in values.items() if name in known and value is not None}
    extra_metadata = accepted.get("metadata")
    if isinstance(extra_metadata, Mapping):
        accepted["metadata"] = {**settings.metadata, **extra_metadata}
    if not accepted:
        return settings
    LOGGER.debug("%s overrides applied to: %s", origin, ", ".join(sorted(accepted)))
    return replace(settings, **accepted)


class SecretVault:
    """Fernet-backed encryption for secrets kept in the settings file.

    Tokens are written as ``fernet:<token>``; a missing key file is generated
    on first use with owner-only permissions.
    """

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or CONFIG_HOME / "settings.key"
        self._cipher: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        sealed = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{sealed}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        scheme, _, body = token.partition(":")
        if not body:
            scheme, body = self.name, token
        if scheme and scheme != self.name:
            raise ValueError(f"Unsupported secret scheme {scheme!r}")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Secret token failed verification") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._key_bytes())
        return self._cipher

    def _key_bytes(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = self._key_path.with_suffix(".tmp")
        staging.write_bytes(key)
        if os.name != "nt":  # pragma: no cover
            staging.chmod(0o600)
        staging.replace(self._key_path)
        return key


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]
