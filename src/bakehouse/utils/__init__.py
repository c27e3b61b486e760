"""Utilities package for the Bakehouse application."""
