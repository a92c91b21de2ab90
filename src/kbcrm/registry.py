"""Process-wide entity configuration.

The active :class:`EntitiesConfig` can be swapped at runtime; listeners are
notified on every change. Evaluation functions never read this module: they
take the configuration as a parameter, and callers (the CLI) fetch it here.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import ConfigurationError, get_entities_file
from .entities import default_entities
from .models import EntitiesConfig

log = logging.getLogger(__name__)

Listener = Callable[[EntitiesConfig], None]

_lock = threading.Lock()
_current: EntitiesConfig | None = None
_listeners: list[Listener] = []


def get() -> EntitiesConfig:
    """Active configuration, loading it on first use.

    Loads ``KBCRM_ENTITIES`` / ``.kbcrm/entities.yaml`` when present, otherwise
    the built-in definitions.
    """
    global _current
    with _lock:
        if _current is not None:
            return _current

    path = get_entities_file()
    config = load_entities(path) if path else default_entities()
    with _lock:
        if _current is None:
            _current = config
        return _current


def set(config: EntitiesConfig) -> None:  # noqa: A001
    """Replace the active configuration and notify listeners."""
    global _current
    with _lock:
        _current = config
        listeners = list(_listeners)
    for listener in listeners:
        try:
            listener(config)
        except Exception as e:
            log.warning("Entity config listener %r failed: %s", listener, e)


def subscribe(listener: Listener) -> Callable[[], None]:
    """Register a change listener; returns a function that unregisters it."""
    with _lock:
        _listeners.append(listener)

    def unsubscribe() -> None:
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return unsubscribe


def reset() -> None:
    """Forget the active configuration and all listeners."""
    global _current
    with _lock:
        _current = None
        _listeners.clear()


def load_entities(path: Path) -> EntitiesConfig:
    """Load and validate an entity configuration YAML file.

    Raises:
        ConfigurationError: If the file is unreadable or invalid.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read entity config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Entity config {path} must be a mapping")

    try:
        config = EntitiesConfig.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise ConfigurationError(f"Invalid entity config {path}:\n" + "\n".join(errors)) from e

    log.info("Loaded %d entity type(s) from %s", len(config.entities), path)
    return config
