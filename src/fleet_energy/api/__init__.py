"""HTTP API."""

from fleet_energy.api.app import create_app

__all__ = ["create_app"]
