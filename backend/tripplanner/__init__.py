"""Walking-route backend for the trip planner."""

__version__ = "0.1.0"
