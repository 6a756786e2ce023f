"""Shared clients for external services."""

from .robot import RobotAPIError, RobotClient

__all__ = [
    "RobotAPIError",
    "RobotClient",
]
