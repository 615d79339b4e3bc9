"""Matchchat: anonymous one-to-one chat matchmaking and session relay."""

__version__ = "0.1.0"
