# vtharness/time/__init__.py
"""Clock interface and the virtual clock service."""
