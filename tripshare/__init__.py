"""
TripShare collaboration core: shared trips, invitations, role based
permissions and a Redis read-through cache.
"""

__version__ = "1.0.0"
