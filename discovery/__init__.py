"""Unfold discovery engine.

Modules:
- identity: deterministic pseudo-identities for top-level folders
- classifier: extension based media classification
- scanner: recursive indexing and single-file updates
- monitor: Watchdog-based filesystem watcher with debounced source sync
- thumbnails: preview generation and the on-disk cache manifest
- feed: ranking and source-diverse pagination
- integrity: reconciliation of the index against the filesystem
- service: the owned engine handle used by the CLI and the HTTP app
- app: FastAPI application factory and uvicorn runner
- migrations: Alembic schema upgrades with pre-migration backups
- database / models / repository: SQLite storage
- config: INI parsing and config object
"""
