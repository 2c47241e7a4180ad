"""Exception hierarchy for Concept Cloud."""

from __future__ import annotations


class ConceptCloudError(Exception):
    """Base class for every error raised by the package."""


class UnknownNamespaceError(ConceptCloudError, KeyError):
    """Raised when a prompt namespace is not one of the configured ones."""


class OracleError(ConceptCloudError):
    """The embedding oracle failed or returned something unusable."""


class PersistenceError(ConceptCloudError):
    """Saving or loading the aggregate state failed."""


class TransportError(ConceptCloudError):
    """A client could not hand a frame to the underlying connection."""
