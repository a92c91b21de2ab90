"""kbcrm: relationship queries and related-note creation for markdown vaults."""

__version__ = "0.4.0"
