"""Annotation feed reconciliation, reply threading and text-fragment links."""

__version__ = "0.3.0"
