"""
Adaptation Engine Exception Hierarchy

Exception classes for the recommendation pipeline. Most engine paths
degrade to a safe default instead of raising; these types mark the few
places where a caller contract is violated or where a collaborator fails
and the failure has to be reported upward or caught at a boundary.
"""

from typing import Any


class AdaptationEngineError(Exception):
    """Base exception for all adaptation engine errors."""

    def __init__(self, message: str, error_code: str = "ADAPTATION_GENERAL_ERROR"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class SnapshotMismatchError(AdaptationEngineError):
    """
    Raised when a caller passes a user id that disagrees with the snapshot.

    Recovery: pass the snapshot that belongs to the user being analyzed.
    """

    def __init__(self, message: str, expected_user_id: str, snapshot_user_id: str):
        super().__init__(message, "SNAPSHOT_USER_MISMATCH")
        self.expected_user_id = expected_user_id
        self.snapshot_user_id = snapshot_user_id


class CacheError(AdaptationEngineError):
    """
    Raised when simulation cache operations fail.

    Recovery: clear cache, reduce cache size, continue without caching.
    """

    def __init__(self, message: str, cache_operation: str):
        super().__init__(message, "CACHE_ERROR")
        self.cache_operation = cache_operation


class InferenceError(AdaptationEngineError):
    """
    Raised by inference providers when a prediction cannot be produced.

    The ML overlay always catches this and falls back to rule output.
    """

    def __init__(self, message: str, features: dict[str, Any] | None = None):
        super().__init__(message, "INFERENCE_FAILED")
        self.features = features or {}


class RuleSetError(AdaptationEngineError):
    """
    Raised for invalid rule set version operations.

    Covers duplicate version ids, unknown version ids and unknown rule names.
    """

    def __init__(self, message: str, version_id: str | None = None):
        super().__init__(message, "RULE_SET_ERROR")
        self.version_id = version_id
