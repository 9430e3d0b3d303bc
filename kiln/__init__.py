"""
Kiln Gallery — budgeted image derivatives for a community pottery gallery.
"""

__version__ = "0.1.0"
