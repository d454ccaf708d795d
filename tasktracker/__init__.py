"""Transactional data-access layer for persisted task records."""

__version__ = "0.1.0"
