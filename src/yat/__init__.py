"""
YAT Extension Host - runtime that lets App extensions customize tunnels.

This package provides:
- Loading, validation and lifecycle management of App extension packages
- Hook pipeline for tunnel start/stop/restart/delete and locale/theme changes
- Tab and action visibility evaluation against tunnel snapshots
- Lifecycle control for framework-agnostic UI adapters
"""

__version__ = "0.1.0"
