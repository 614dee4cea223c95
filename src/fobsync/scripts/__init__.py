"""Operational scripts for fobsync."""
