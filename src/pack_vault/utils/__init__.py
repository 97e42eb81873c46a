"""Utility helpers for pack_vault."""
