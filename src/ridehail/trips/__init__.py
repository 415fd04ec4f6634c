"""Ride request and ride lifecycles."""

from .request_state_machine import RideRequestStateMachine
from .ride_state_machine import RideStateMachine

__all__ = ["RideRequestStateMachine", "RideStateMachine"]
