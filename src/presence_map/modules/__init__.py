"""
Modules package for presence-map.

Modules are plug-ins that add behavior on top of the kernel.
"""

from presence_map.modules.base import MapModule

__all__ = ["MapModule"]
