"""Configuration management for Fleet Energy."""

from fleet_energy.config.schema import AppConfig
from fleet_energy.config.manager import ConfigManager

__all__ = ["AppConfig", "ConfigManager"]
