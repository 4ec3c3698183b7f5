"""Hostclaim - custom hostname ownership verification and activation."""

__version__ = "0.1.0"
