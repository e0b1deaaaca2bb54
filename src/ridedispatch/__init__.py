"""Ride dispatch service: turns order requests into signed taxi-provider orders."""

__version__ = "0.1.0"
