"""Version information for rig-workspace."""

__version__ = "0.1.0"
