"""Trigger orchestration, configuration and shared runtime primitives."""
