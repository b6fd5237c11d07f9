"""Resilient ingestion layer for the Whop API."""

__version__ = "0.1.0"
