"""
Core business logic package for RealFocus.

Contains the headless FocusEngine, the browser command types and the
grace-period controller. Zero browser dependencies.
"""

from core.engine import FocusEngine

__all__ = ["FocusEngine"]
