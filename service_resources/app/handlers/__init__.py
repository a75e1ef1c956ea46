"""
HTTP handlers for collection resources.
"""

from .crud import ResourceHandler, reserved_attributes

__all__ = ["ResourceHandler", "reserved_attributes"]
