"""Local persistence app for the clinic backend.

This package wraps a small key-value store (a Django cache alias) with a
table-oriented storage engine, keeps patients, estimates and inpatient
admission records consistent through a debounced sync orchestrator, and
exposes a thin administrative API for backups and export/import.
"""
