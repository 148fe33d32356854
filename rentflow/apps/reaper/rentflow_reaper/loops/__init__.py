"""Reaper loops."""
