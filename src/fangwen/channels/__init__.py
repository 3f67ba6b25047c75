"""Fangwen channels module.

Control Surface: HTTP-API für Status-Abfragen und Steuerbefehle.
"""

from fangwen.channels.api import ControlAPI

__all__ = ["ControlAPI"]
