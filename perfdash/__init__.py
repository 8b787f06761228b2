"""
SDK performance dashboard query service.
"""

__version__ = "0.1.0"
