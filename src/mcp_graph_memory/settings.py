"""
Centralized configuration for the graph memory server.

This module consolidates all configuration concerns (CLI args, environment
variables, and sensible defaults) into a single, validated settings object.

Precedence (highest first):
- CLI arguments
- Environment variables (optionally from .env)
- Defaults

The store directory and the backup file location have no defaults: a process
started without them cannot run and `load()` raises a `ConfigurationError`.
"""

from __future__ import annotations

from dotenv import load_dotenv
import argparse
import json
import os
from pathlib import Path
from typing import Literal
import logging as lg

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = lg.getLogger("graph-memory-bootstrap")


DEFAULT_PORT = 8000


Transport = Literal["stdio", "sse", "http"]

TRANSPORT_ENUM: dict[str, Transport] = {
    "stdio": "stdio",
    "http": "http",
    "sse": "sse",
    # Common aliases that normalize to http
    "streamable-http": "http",
    "streamablehttp": "http",
    "streamable_http": "http",
    "streamable http": "http",
    "streamableHttp": "http",
}


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or invalid. Fatal at startup."""

    pass


class StoreOptions(BaseModel):
    """
    Tuning knobs for the document store, read from the `MEMORY_STORE_OPTIONS` JSON blob.

    Properties:
    - auto_compaction(bool): Compact the store after every write
    - revs_limit(int): Number of past revisions kept per document
    - max_retries(int): Attempts for a store read/write hitting a transient fault
    - initial_delay_ms(int): First retry delay; doubles on each retry
    - max_delay_ms(int): Cap for the retry delay
    - open_attempts(int): Attempts to open the store at startup
    - settle_delay_ms(int): Fixed wait before a handle is closed and reopened
    - stale_lock_seconds(float): Age after which a leftover LOCK file is removed
    """

    model_config = ConfigDict(extra="forbid")

    auto_compaction: bool = Field(default=True)
    revs_limit: int = Field(default=10, ge=1)
    max_retries: int = Field(default=5, ge=1)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    open_attempts: int = Field(default=5, ge=1)
    settle_delay_ms: int = Field(default=500, ge=0)
    stale_lock_seconds: float = Field(default=30.0, ge=0)


# Names used by earlier deployments, read when the current name is unset
LEGACY_ENV_NAMES: dict[str, str] = {
    "MEMORY_STORE_PATH": "POUCHDB_PATH",
    "MEMORY_STORE_OPTIONS": "POUCHDB_OPTIONS",
    "MEMORY_DISABLE_FILE": "DISABLE_MEMORY_FILE",
}


def _getenv(name: str) -> str | None:
    value = os.getenv(name)
    if value is None and name in LEGACY_ENV_NAMES:
        value = os.getenv(LEGACY_ENV_NAMES[name])
    return value


def _env_flag(name: str) -> bool:
    return (_getenv(name) or "false").strip().lower() == "true"


class GraphMemorySettings:
    """Application settings loaded from CLI and environment.

    Attributes:
        debug: Enables verbose logging when True
        transport: Validated transport value ("stdio" | "sse" | "http")
        port: Server port (used when transport is http)
        streamable_http_host: Optional HTTP host
        streamable_http_path: Optional HTTP path
        memory_path: Absolute path to the JSONL backup file (None when disabled)
        store_path: Absolute path to the document store directory
        store_options: Validated `StoreOptions`
        disable_memory_file: Skip writing the backup file when True
    """

    def __init__(
        self,
        *,
        debug: bool,
        transport: Transport,
        port: int,
        memory_path: Path | None,
        store_path: Path,
        streamable_http_host: str | None = None,
        streamable_http_path: str | None = None,
        store_options: StoreOptions | None = None,
        disable_memory_file: bool = False,
    ) -> None:
        self.debug = bool(debug)
        self.transport = transport
        self.port = int(port)
        self.memory_path = memory_path
        self.store_path = store_path
        self.streamable_http_host = streamable_http_host
        self.streamable_http_path = streamable_http_path
        self.store_options = store_options or StoreOptions()
        self.disable_memory_file = bool(disable_memory_file)

    @property
    def log_dir(self) -> Path:
        """Directory that receives the log file: next to the backup file, else the store."""
        if self.memory_path is not None:
            return self.memory_path.parent
        return self.store_path

    # ---------- Construction ----------
    @classmethod
    def load(cls, argv: list[str] | None = None) -> "GraphMemorySettings":
        """
        Create a settings instance from CLI args, env, and defaults.

        Raises:
            ConfigurationError: if the store location, or the backup file location while the
            backup is enabled, is missing, or if any value fails validation.
        """
        # CLI args > Env vars > Defaults
        parser = argparse.ArgumentParser(add_help=False)
        parser.add_argument("--memory-path", type=str)
        parser.add_argument("--store-path", type=str)
        parser.add_argument("--disable-memory-file", action="store_true", default=None)
        parser.add_argument("--debug", action="store_true", default=None)
        parser.add_argument("--transport", type=str)
        parser.add_argument("--port", type=int)
        parser.add_argument("--http-host", type=str)
        parser.add_argument("--http-path", type=str)
        args, _ = parser.parse_known_args(argv)

        # Load .env if available
        env_path = os.getenv("MEMORY_ENV_PATH")
        if env_path and Path(env_path).exists():
            load_dotenv(env_path, verbose=False)
            logger.debug(f"Loaded .env from {env_path}")
        elif load_dotenv(verbose=False):
            logger.debug("Loaded .env from current directory")

        # Debug mode
        debug: bool = bool(args.debug) or _env_flag("MEMORY_DEBUG")
        if debug:
            # Let other scripts in the same process see debug mode
            os.environ["MEMORY_DEBUG"] = "true"
            logger.setLevel(lg.DEBUG)
            logger.debug(f"🐞 Debug mode: {debug}")

        # Transport
        transport_raw = (args.transport or os.getenv("MEMORY_TRANSPORT", "stdio")).strip().lower()
        if transport_raw not in TRANSPORT_ENUM:
            valid = ", ".join(sorted({"stdio", "sse", "streamable-http", "http"}))
            raise ConfigurationError(f"Invalid transport '{transport_raw}'. Valid options: {valid}")
        transport: Transport = TRANSPORT_ENUM[transport_raw]

        # Port/Host/Path for HTTP
        try:
            http_port = args.port or int(os.getenv("MEMORY_HTTP_PORT", DEFAULT_PORT))
        except ValueError as e:
            raise ConfigurationError(f"Invalid MEMORY_HTTP_PORT: {e}")
        http_host = args.http_host or os.getenv("MEMORY_HTTP_HOST")
        http_path = args.http_path or os.getenv("MEMORY_HTTP_PATH")

        # Store location is always required
        store_raw = args.store_path or _getenv("MEMORY_STORE_PATH")
        if not store_raw or not store_raw.strip():
            raise ConfigurationError(
                "No document store location configured. Set MEMORY_STORE_PATH or pass --store-path."
            )
        store_path = Path(store_raw.strip()).resolve()

        # Backup file location is required unless the backup is disabled
        disable_memory_file = bool(args.disable_memory_file) or _env_flag("MEMORY_DISABLE_FILE")
        memory_raw = args.memory_path or os.getenv("MEMORY_FILE_PATH")
        if memory_raw and memory_raw.strip():
            memory_path: Path | None = Path(memory_raw.strip()).resolve()
        elif disable_memory_file:
            memory_path = None
        else:
            raise ConfigurationError(
                "No backup file location configured. Set MEMORY_FILE_PATH, pass --memory-path, "
                "or disable the backup file with MEMORY_DISABLE_FILE=true."
            )
        if memory_path is not None and memory_path.is_dir():
            raise ConfigurationError(f"Backup file path {memory_path} is a directory")

        # Store options (JSON blob)
        options_raw = _getenv("MEMORY_STORE_OPTIONS")
        try:
            store_options = (
                StoreOptions.model_validate(json.loads(options_raw))
                if options_raw
                else StoreOptions()
            )
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid MEMORY_STORE_OPTIONS: {e}")

        return cls(
            debug=debug,
            transport=transport,
            port=http_port,
            memory_path=memory_path,
            store_path=store_path,
            streamable_http_host=http_host,
            streamable_http_path=http_path,
            store_options=store_options,
            disable_memory_file=disable_memory_file,
        )


__all__ = ["GraphMemorySettings", "StoreOptions", "ConfigurationError", "Transport"]
