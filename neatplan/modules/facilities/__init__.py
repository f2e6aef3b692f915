"""Facility Management Module: rooms and equipment."""
