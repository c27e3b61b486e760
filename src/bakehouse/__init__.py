"""Bakehouse: bake-slot order intake, production planning and public catalog sync."""

__version__ = "0.1.0"
