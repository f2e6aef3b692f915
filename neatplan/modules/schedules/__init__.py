"""Cleaning schedules, their room/equipment assignments and the cycle engine."""
