"""
plugdeck: runtime for declaratively described dashboard plugins.
"""

__version__ = "0.1.0"
