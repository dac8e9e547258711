"""Ticket status tracking service."""
