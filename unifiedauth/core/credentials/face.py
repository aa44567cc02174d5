from __future__ import annotations

import time
from typing import Any, Callable, Optional

from unifiedauth.core.credentials.base import AuthMethod, CredentialVerifier, FaceCredential, VerifyResult
from unifiedauth.core.errors import FailureReason, InsufficientBiometricDataError, ValidationError
from unifiedauth.core.faceid.similarity import resolve_descriptor


class FaceVerifier(CredentialVerifier[FaceCredential]):
    method = AuthMethod.face_id
    credential_model = FaceCredential

    def __init__(
        self,
        *,
        store: Any,
        directory: Any,
        guard: Any = None,
        threshold: float = 0.60,
        required_confidence: Optional[Callable[[str], float]] = None,
        time_fn: Callable[[], float] = time.time,
    ):
        self.store = store
        self.directory = directory
        self.guard = guard
        self.threshold = float(threshold)
        self.required_confidence = required_confidence
        self._time = time_fn

    def rate_key(self, credential: FaceCredential, *, client_key: str) -> str:
        # the identity is unknown until matched; throttle the client instead
        return f"face:{client_key}"

    def verify(self, credential: FaceCredential) -> VerifyResult:
        try:
            vec = resolve_descriptor(credential.descriptor, credential.face_data)
        except InsufficientBiometricDataError:
            return VerifyResult.failure(FailureReason.INSUFFICIENT_BIOMETRIC_DATA, "empty descriptor")
        except ValidationError as e:
            return VerifyResult.failure(FailureReason.VALIDATION_ERROR, e.user_message)

        now = self._time()
        match = self._call("face_store", self.store.find_by_descriptor, vec.tolist(), self.threshold, now=now)
        if match is None:
            return VerifyResult.failure(FailureReason.NO_BIOMETRIC_MATCH, "no profile above similarity threshold", confidence=credential.confidence)

        profile = match.profile
        confidence = float(credential.confidence) if credential.confidence is not None else match.confidence
        ident = self._call("directory", self.directory.get_by_id, profile.user_id)
        if ident is None:
            return VerifyResult.failure(FailureReason.NOT_FOUND, "profile owner missing", user_id=profile.user_id, confidence=confidence)

        if self.required_confidence is not None and credential.confidence is not None:
            required = float(self.required_confidence(ident.id))
            if float(credential.confidence) < required:
                return VerifyResult.failure(
                    FailureReason.NO_BIOMETRIC_MATCH,
                    f"capture confidence {credential.confidence:.1f} below required {required:.0f}",
                    user_id=ident.id,
                    confidence=confidence,
                    profile_id=profile.id,
                )

        detail = f"similarity {match.similarity:.3f}"
        if profile.reactivation_due(now):
            self._call("face_store", self.store.reactivate, profile.id)
            detail += "; reactivated after temporary disable"
        self._call("face_store", self.store.touch, profile.id, now)
        return VerifyResult.success(ident, confidence=confidence, profile_id=profile.id, detail=detail)
