"""Payload-driven extraction of structured data from web pages, with pluggable stores and encoders."""

__version__ = "0.1.0"