"""Scope conflict detection and advisory scope reservations."""
