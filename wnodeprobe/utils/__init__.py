"""Utility helpers for wnodeprobe."""
