"""Staging auth bridge: grant staging-site access to CMS studio editors."""

__version__ = "1.1.0"
