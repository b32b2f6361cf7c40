"""Budget-capped overnight runner for automatable engineering chores."""

__version__ = "0.1.0"
