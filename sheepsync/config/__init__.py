"""
Configuration module.

Handles companion settings and the installation id.
"""

from .settings import CompanionSettings

__all__ = [
    "CompanionSettings",
]
