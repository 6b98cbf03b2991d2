"""Client module - local state, remote client and sync service."""
