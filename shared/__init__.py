"""Shared utilities for the bare-metal provisioner: logging, settings, Robot client."""

# Schemas are imported from the shared.schemas submodule
# Example: from shared.schemas import RobotServer
