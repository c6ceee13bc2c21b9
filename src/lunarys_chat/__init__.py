"""Streaming chat client for the Lunarys backend."""

__version__ = "0.1.0"
