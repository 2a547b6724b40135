"""Helpers shared by the gateway and worker processes."""
