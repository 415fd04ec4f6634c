"""Ride-hail core: driver dispatch, dynamic fares, ride lifecycles and wallet settlement."""

__version__ = "0.1.0"
