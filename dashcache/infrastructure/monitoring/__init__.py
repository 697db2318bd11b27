"""Monitoring support: logging setup, alert channels and system probes."""
