"""Rover control logic: message types, sensor polling, motion ramping and autonomous behaviour."""

__version__ = "0.1.0"
__all__ = ["messages", "sensors", "motion", "autonomy"]