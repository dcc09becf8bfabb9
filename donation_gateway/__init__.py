"""Donation payment gateway integration and reconciliation."""
