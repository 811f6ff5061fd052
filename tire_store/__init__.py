"""Tire retailer storefront and back office."""

__version__ = "1.0.0"
