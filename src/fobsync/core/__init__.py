"""Core configuration for fobsync."""
