"""Minimal browser sandbox: isolated document contexts driven by an injected agent."""

__version__ = "0.1.0"
