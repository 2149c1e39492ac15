# vtharness/diagnostics/__init__.py
"""Logging and diagnostics for simulations."""
