"""Clients for the servers tsukurogami bridges."""
