"""
VOXAR Anchor Relocalization Service
Re-places persisted spatial anchors once the live environment is mapped
"""

__version__ = "1.0.0"
