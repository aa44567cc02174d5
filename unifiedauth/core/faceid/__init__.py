from unifiedauth.core.faceid.devices import DeviceTrustPolicy
from unifiedauth.core.faceid.lifecycle import FaceIdLifecycle
from unifiedauth.core.faceid.models import (
    DeviceDecision,
    FaceIdState,
    FaceIdStatus,
    FaceMatch,
    FaceProfile,
    FaceProfileStatus,
    FaceRegistration,
)
from unifiedauth.core.faceid.store import FaceProfileStore, InMemoryFaceProfileStore

__all__ = [
    "DeviceDecision",
    "DeviceTrustPolicy",
    "FaceIdLifecycle",
    "FaceIdState",
    "FaceIdStatus",
    "FaceMatch",
    "FaceProfile",
    "FaceProfileStatus",
    "FaceProfileStore",
    "FaceRegistration",
    "InMemoryFaceProfileStore",
]
