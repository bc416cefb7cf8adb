"""Herp Keeper API — reptile and amphibian collection tracking.

Profiles, their collections, and a realtime channel that tells every
open browser tab when a keeper's profile changes.
"""

__version__ = "0.1.0"
