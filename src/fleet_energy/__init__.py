"""Fleet Energy: telemetry ingestion and charging efficiency analytics."""

try:
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("fleet-energy")
except Exception:
    __version__ = "dev"
