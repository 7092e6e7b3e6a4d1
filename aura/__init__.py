"""AURA — Adaptive User Routine Automation."""

__version__ = "0.4.0"
