"""
gotichat - A chat-style web proxy and client for Gotify notification servers.
"""

__version__ = "0.1.0"
