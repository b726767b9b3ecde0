"""Owned boxes, guardians, unlock requests and invitation events, with a request router and an in-memory store."""

__version__ = "0.1.0"