"""
Core business exceptions for the dataset refresher.

This module defines a hierarchy of custom exceptions to allow for granular
error handling and clear separation of failure domains: a download failure
aborts a whole cycle, a load or swap failure only aborts one table.
"""


class RefresherError(Exception):
    """Base exception for all component-specific errors."""
    pass


# --- Configuration Errors ---

class ConfigurationError(RefresherError):
    """Raised for errors related to application configuration."""
    pass


# --- Infrastructure Errors ---

class InfrastructureError(RefresherError):
    """Base class for errors related to external systems (network, store)."""
    pass


class DownloadError(InfrastructureError):
    """Raised when a single transfer attempt fails (e.g., size mismatch)."""
    pass


class FetchError(InfrastructureError):
    """Raised when one or more artifacts could not be fetched after retries."""

    def __init__(self, message: str, artifacts=()):
        super().__init__(message)
        self.artifacts = tuple(artifacts)


class StoreError(InfrastructureError):
    """Raised when the relational store rejects a statement."""
    pass


# --- Domain/Business Logic Errors ---

class DomainError(RefresherError):
    """Base class for errors related to business logic failures."""
    pass


class IntegrityError(DomainError):
    """Raised when a compressed artifact fails its stream validity check."""
    pass


class ProcessingError(DomainError):
    """Raised when an artifact cannot be decompressed or parsed."""
    pass


class LoadError(DomainError):
    """Raised when a table's shadow load fails at any step."""

    def __init__(self, table: str, phase: str, message: str):
        super().__init__(f"[{table}] {phase} failed: {message}")
        self.table = table
        self.phase = phase


class SwapError(DomainError):
    """Raised when a shadow table cannot be promoted to production."""

    def __init__(self, table: str, message: str):
        super().__init__(f"[{table}] promotion failed: {message}")
        self.table = table
