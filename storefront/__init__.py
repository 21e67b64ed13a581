"""Storefront checkout service: cart, order initiation and payment reconciliation."""

__version__ = "1.0.0"
