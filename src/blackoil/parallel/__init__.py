"""Communicators for the global reductions of distributed runs."""
