from __future__ import annotations

import base64
import binascii
import json
from typing import List, Optional, Sequence, Tuple

import numpy as np

from unifiedauth.core.errors import InsufficientBiometricDataError, ValidationError


def as_descriptor(values: Sequence[float]) -> np.ndarray:
    with np.errstate(over="ignore", invalid="ignore"):
        vec = np.asarray(values, dtype=np.float32).ravel()
    if vec.size and not np.all(np.isfinite(vec)):
        raise ValidationError("Descriptor contains non-finite values.", field="descriptor")
    return vec


def decode_descriptor(payload: str) -> np.ndarray:
    """
    Decodes an opaque face payload: either a JSON list of numbers or base64 of
    little-endian float32 bytes.
    """
    s = str(payload or "").strip()
    if not s:
        raise InsufficientBiometricDataError(field="face_data")
    if s.startswith("["):
        try:
            return as_descriptor(json.loads(s))
        except (ValueError, TypeError) as e:
            raise ValidationError("Face data is not a valid descriptor.", field="face_data") from e
    try:
        raw = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Face data is not a valid descriptor.", field="face_data") from e
    if len(raw) % 4:
        raise ValidationError("Face data is not a valid descriptor.", field="face_data")
    return as_descriptor(np.frombuffer(raw, dtype="<f4"))


def encode_descriptor(values: Sequence[float]) -> str:
    return base64.b64encode(as_descriptor(values).astype("<f4").tobytes()).decode("ascii")


def resolve_descriptor(descriptor: Optional[Sequence[float]], face_data: Optional[str]) -> np.ndarray:
    if descriptor is not None:
        vec = as_descriptor(descriptor)
    elif face_data:
        vec = decode_descriptor(face_data)
    else:
        raise InsufficientBiometricDataError(field="descriptor")
    if vec.size == 0:
        raise InsufficientBiometricDataError(field="descriptor")
    return vec


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float32).ravel()
    vb = np.asarray(b, dtype=np.float32).ravel()
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def best_match(query: np.ndarray, candidates: List[Sequence[float]]) -> Tuple[int, float]:
    """
    Returns (index, similarity) of the candidate closest to query by cosine
    similarity, or (-1, 0.0) when nothing is comparable. Candidates whose length
    differs from the query never match, and neither do non-finite scores.
    """
    q = np.asarray(query, dtype=np.float32).ravel()
    idx = [i for i, c in enumerate(candidates) if len(c) == q.size]
    if not idx or q.size == 0 or not np.all(np.isfinite(q)):
        return -1, 0.0
    mat = np.stack([np.asarray(candidates[i], dtype=np.float32) for i in idx], axis=0)
    with np.errstate(over="ignore", invalid="ignore"):
        mat /= np.linalg.norm(mat, axis=1, keepdims=True) + 1e-8
        qn = q / (np.linalg.norm(q) + 1e-8)
        sims = mat @ qn
    sims = np.where(np.isfinite(sims), sims, -np.inf)
    j = int(np.argmax(sims))
    if not np.isfinite(sims[j]):
        return -1, 0.0
    return idx[j], float(sims[j])
