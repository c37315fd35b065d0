"""
Tracey: lost & found matching and notification core.

Pairs lost and found item reports by embedding similarity, records matches,
and delivers push/email notifications with a durable retry queue.
"""

__app_name__ = "Tracey"
__version__ = "0.1.0"
