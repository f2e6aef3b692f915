"""NeatPlan: housekeeping schedules for rooms and equipment."""

__version__ = "0.4.0"
