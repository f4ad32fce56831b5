# fswatcher/__init__.py

"""
fswatcher
Polling file system change detector with loopback suppression
"""
__version__ = "1.0.0"
