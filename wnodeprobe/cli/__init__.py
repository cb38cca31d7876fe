"""CLI module for wnodeprobe."""
