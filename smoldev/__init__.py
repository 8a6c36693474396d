"""
smoldev - generate a whole code project from one prompt
"""

__version__ = "1.0.0"
