"""Shared library code for cli-wrapped."""
