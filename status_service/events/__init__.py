"""Inbound ticket events and outbound status change notifications."""
