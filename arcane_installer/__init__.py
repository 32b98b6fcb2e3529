"""Manifest-driven delta installer for Pterodactyl panel extensions."""

__version__ = "2.1.0"

__all__ = ["__version__"]
