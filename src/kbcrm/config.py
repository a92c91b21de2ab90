"""Configuration management for kbcrm.

This module contains the configurable constants of the relationship engine
and the environment-based discovery of the vault and the entity
configuration file. Magic values are documented here rather than scattered
throughout the codebase.
"""

import os
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


def get_vault_root() -> Path:
    """Get the vault (note directory) root.

    Discovery order:
    1. KBCRM_VAULT_ROOT environment variable (explicit override)
    2. A ``.kbcrm`` marker directory walking up from cwd
    3. Error with helpful message

    Raises:
        ConfigurationError: If no vault can be found.
    """
    root = os.environ.get("KBCRM_VAULT_ROOT")
    if root:
        path = Path(root)
        if not path.is_dir():
            raise ConfigurationError(f"KBCRM_VAULT_ROOT is not a directory: {root}")
        return path

    discovered = _discover_vault_root()
    if discovered:
        return discovered

    raise ConfigurationError(
        "No vault found. Options:\n"
        "  1. Set KBCRM_VAULT_ROOT to your notes directory\n"
        f"  2. Create a {VAULT_MARKER_DIR}/ directory at the vault root"
    )


def _discover_vault_root(start_dir: Path | None = None) -> Path | None:
    """Walk up from start_dir looking for the vault marker directory."""
    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(MAX_DISCOVERY_DEPTH):
        if (current / VAULT_MARKER_DIR).is_dir():
            return current
        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


def get_entities_file() -> Path | None:
    """Get the entity configuration file, if one is configured.

    Discovery order:
    1. KBCRM_ENTITIES environment variable
    2. ``{vault}/.kbcrm/entities.yaml`` when it exists

    Returns None when the built-in entity definitions should be used.
    """
    explicit = os.environ.get("KBCRM_ENTITIES")
    if explicit:
        return Path(explicit)

    try:
        vault = get_vault_root()
    except ConfigurationError:
        return None

    candidate = vault / VAULT_MARKER_DIR / ENTITIES_FILENAME
    return candidate if candidate.exists() else None


# =============================================================================
# Vault layout
# =============================================================================

# Directory marking a vault root (also holds the optional entity config)
VAULT_MARKER_DIR = ".kbcrm"

# Entity configuration file name inside the marker directory
ENTITIES_FILENAME = "entities.yaml"

# Maximum directory traversal depth when searching for the vault marker.
# Prevents infinite loops on circular symlinks or unusual filesystems.
MAX_DISCOVERY_DEPTH = 50

# Extension appended when a link target has none (canonicalization step 3)
DEFAULT_EXTENSION = ".md"


# =============================================================================
# Entity identity
# =============================================================================

# Frontmatter keys holding the entity type, in lookup order.
# "mondoType" is the newer key; plain "type" is the legacy one.
TYPE_KEYS = ("mondoType", "type")

# Keys that attribute templates never write (protects entity identity)
RESERVED_TYPE_KEYS = frozenset({"type", "mondotype"})

# Frontmatter keys tried, in order, for a note's display name
DISPLAY_NAME_KEYS = ("show", "name")

# Title used when a rendered title template is blank
UNTITLED = "Untitled"


# =============================================================================
# Panels
# =============================================================================

# Host frontmatter key storing per-panel UI state (manual order)
STATE_KEY = "crmState"

# Sort applied to panels that declare none: newest first
DEFAULT_SORT = {"strategy": "column", "column": "date", "direction": "desc"}

# Plural synonyms matched in addition to the host type key when a simple
# backlink panel declares no explicit properties
MATCH_PROPERTY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "person": ("people", "participants"),
    "team": ("teams",),
    "company": ("companies",),
}

# Separator used when a column value is an array
COLUMN_JOIN = ", "
