"""Shared cross-domain components.

Exception classes carrying an error kind, and the JSON response envelope
used by every router.
"""
