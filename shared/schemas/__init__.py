"""Shared Pydantic schemas.

This module provides typed data structures for external API responses
(Hetzner Robot webservice).

Usage:
    from shared.schemas import RobotServer, RobotSSHKey
"""

from .robot import (
    RobotErrorBody,
    RobotRescue,
    RobotReset,
    RobotServer,
    RobotSSHKey,
)

__all__ = [
    "RobotServer",
    "RobotSSHKey",
    "RobotRescue",
    "RobotReset",
    "RobotErrorBody",
]
