"""Integration shortcuts."""

from .mindbody_client import (
    MindbodyAuthError,
    MindbodyClient,
    MindbodyClientError,
    PageResult,
    build_mindbody_client,
)

__all__ = [
    "MindbodyAuthError",
    "MindbodyClient",
    "MindbodyClientError",
    "PageResult",
    "build_mindbody_client",
]
