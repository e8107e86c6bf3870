"""
Web module - Flask HTTP surface for the master session subsystem.
"""

from masterguard.web.app import create_app

__all__ = ["create_app"]
