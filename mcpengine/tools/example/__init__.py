"""Example provider."""
