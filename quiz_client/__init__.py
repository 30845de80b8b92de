"""
Live quiz player client.
"""
__version__ = "0.1.0"
