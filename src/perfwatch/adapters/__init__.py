"""Adapters binding the core to host environments and web frameworks."""
