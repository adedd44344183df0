"""
Input plugins package.

Input plugins let users submit and delete claims and resource classes.
"""

from plugins.inputs.base import InputPlugin

__all__ = ["InputPlugin"]
