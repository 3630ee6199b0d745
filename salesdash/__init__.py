"""
Sales Dashboard Backend

Hourly Shopify and marketing sync into a row store, plus the read-only
reports API the dashboard reads from.
"""

__version__ = "1.0.0"
