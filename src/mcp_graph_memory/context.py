"""
Application context for runtime state.

This module provides a centralized container for runtime dependencies
(settings, logger) that are initialized once at startup and accessed
throughout the application. The document store is deliberately not held
here: it is opened and owned by `server.start_server()`.

Usage:
    from .context import ctx

    # At startup (in __main__.py):
    ctx.init()

    # Anywhere else:
    ctx.settings.debug
    ctx.logger.info("...")
"""

from __future__ import annotations

import logging as lg
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .settings import GraphMemorySettings


LOG_FILE_NAME = "graph-memory.log"


class AppContext:
    """
    Singleton container for application runtime state.

    Attributes:
        settings: Application settings (loaded from CLI/env/defaults)
        logger: Configured logger instance
    """

    _instance: "AppContext | None" = None
    _initialized: bool = False

    def __new__(cls) -> "AppContext":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        # Avoid re-initializing on repeated __init__ calls
        pass

    def init(self, settings: "GraphMemorySettings | None" = None) -> "AppContext":
        """
        Initialize the application context. Call once at startup.

        Args:
            settings: Pre-built settings; loaded from CLI/env when omitted

        Returns:
            self for method chaining

        Raises:
            ConfigurationError: if required settings are missing
        """
        if self._initialized:
            return self

        # Import here to avoid circular imports and control load order
        from .settings import GraphMemorySettings

        self._settings = settings or GraphMemorySettings.load()
        self._logger = self._configure_logger()

        self._initialized = True
        return self

    def _configure_logger(self) -> lg.Logger:
        """Configure and return the application logger."""
        level = lg.DEBUG if self._settings.debug else lg.INFO
        lg.basicConfig(level=level)
        logger = lg.getLogger("graph-memory")
        logger.setLevel(level)

        # Add file handler
        log_dir = self._settings.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = lg.FileHandler(filename=log_dir / LOG_FILE_NAME, encoding="utf-8")
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

        return logger

    def reset(self) -> None:
        """Drop the initialized state, closing any file handlers. Used by tests."""
        if not self._initialized:
            return
        for handler in list(self._logger.handlers):
            if isinstance(handler, lg.FileHandler):
                self._logger.removeHandler(handler)
                handler.close()
        del self._settings
        del self._logger
        self._initialized = False

    @property
    def settings(self) -> "GraphMemorySettings":
        """Get application settings. Raises if not initialized."""
        if not self._initialized:
            raise RuntimeError("AppContext not initialized. Call ctx.init() first.")
        return self._settings

    @property
    def logger(self) -> lg.Logger:
        """Get configured logger. Raises if not initialized."""
        if not self._initialized:
            raise RuntimeError("AppContext not initialized. Call ctx.init() first.")
        return self._logger

    @property
    def is_initialized(self) -> bool:
        """Check if context has been initialized."""
        return self._initialized


# Global context instance - import this
ctx = AppContext()

__all__ = ["ctx", "AppContext"]
