"""
Field intake: local queue and resilient delivery of purchase,
unloading and delivery records to a remote collector.
"""

__version__ = "1.0.0"
