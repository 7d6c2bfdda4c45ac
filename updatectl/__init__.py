"""Multi-server update orchestration: detection, remediation and cleanup."""

__version__ = "0.4.0"
