"""
Greekfeed

Live derivatives feed normalization, implied volatility and Greeks,
scenario projection for option strategies, and hourly snapshot persistence.
"""

__version__ = "0.1.0"
