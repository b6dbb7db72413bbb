"""
Pillary gateway: metadata, status and media resolution for the Pi Pyramid collection
"""
__version__ = "1.0.0"
