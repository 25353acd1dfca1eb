"""Capability providers."""
