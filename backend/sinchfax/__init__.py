"""Sinch Fax integration: send, receive and reconcile faxes against local records."""

__version__ = "1.0.0"
