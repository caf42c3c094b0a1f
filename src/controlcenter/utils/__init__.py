"""Utility helpers for controlcenter."""
