"""
Claim-issuance services:
- Geofence distance checks
- Signed-message identity verification
- Badge metadata resolution
- The registration and claim pipeline
"""

from .geo import distance_meters, within_radius
from .identity import IdentityVerifier, canonical_message, is_identity_handle
from .metadata import MetadataResolver
from .pipeline import ClaimPipeline, ClaimState

__all__ = [
    "distance_meters",
    "within_radius",
    "IdentityVerifier",
    "canonical_message",
    "is_identity_handle",
    "MetadataResolver",
    "ClaimPipeline",
    "ClaimState",
]
