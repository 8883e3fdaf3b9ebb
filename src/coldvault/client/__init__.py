"""Client module - Service API, upload sessions, transfer engine and CLI."""
