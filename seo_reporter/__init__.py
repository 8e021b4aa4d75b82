"""
SEO Rank Reporter
=================

Tracks keyword rankings for a website and its competitors, generates
scored SEO report snapshots and emails them to the website's
notification address.
"""

__version__ = "1.0.0"
