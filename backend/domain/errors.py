"""
Errors raised by the discovery pipeline.
"""
from typing import List, Optional


class DiscoveryError(Exception):
    """Base class for discovery pipeline failures."""


class PlacesUnavailable(DiscoveryError):
    """Every lookup-service generation failed for a request."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidPlaceLocation(DiscoveryError):
    """A place lacks numeric coordinates and cannot be persisted."""

    def __init__(self, place_id: str, name: Optional[str] = None):
        super().__init__(f"Place {place_id} has no usable coordinates")
        self.place_id = place_id
        self.name = name


class DiscoveryNotFound(DiscoveryError):
    def __init__(self, discovery_id: str):
        super().__init__(f"Discovery not found: {discovery_id}")
        self.discovery_id = discovery_id


class InvalidTransition(DiscoveryError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move discovery from {current} to {target}")
        self.current = current
        self.target = target


class DismissalChoiceRequired(DiscoveryError):
    """The dismissal policy is 'ask': the caller must choose a duration."""

    def __init__(self, discovery_id: str):
        super().__init__(f"Dismissal duration required for {discovery_id}")
        self.discovery_id = discovery_id


class DegradedPersistence(UserWarning):
    """Remote store unreachable; the local cache served the operation."""
