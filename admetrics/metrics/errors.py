"""
Metrics Error Taxonomy

Every failure the metrics layer can surface derives from MetricsError.
Per-platform errors are recovered inside the aggregator; only
BothPlatformsFailedError reaches callers of get_metrics.
"""

from typing import Dict, Optional


class MetricsError(Exception):
    """Base class for metrics layer errors."""


class InvalidRangeError(MetricsError, ValueError):
    """Malformed date range or period identifier. Never retried."""


class PlatformError(MetricsError):
    """Error raised by an ad platform client."""

    retryable: bool = True

    def __init__(self, message: str, platform: Optional[str] = None, status_code: int = None):
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code

    def to_dict(self) -> Dict:
        return {
            "type": type(self).__name__,
            "message": str(self),
            "platform": self.platform,
            "retryable": self.retryable,
        }


class CredentialError(PlatformError):
    """Platform credentials are invalid or expired; the user must re-authorize."""

    retryable = False


class TransientFetchError(PlatformError):
    """Network failure, timeout or rate limit. Safe to retry on a later call."""

    retryable = True


class EmptyResultError(PlatformError):
    """The platform returned no campaign rows for the range."""

    retryable = True


class BothPlatformsFailedError(MetricsError):
    """
    No requested platform produced data, live or cached.

    There is nothing to fall back to, so no record is returned.
    """

    def __init__(self, errors: Dict[str, PlatformError]):
        self.errors = dict(errors)
        detail = ", ".join(f"{platform}: {error}" for platform, error in sorted(self.errors.items()))
        super().__init__(f"All platform fetches failed ({detail})")

    @property
    def requires_reauth(self) -> bool:
        """True when every failure is a credential failure."""
        return bool(self.errors) and all(
            isinstance(error, CredentialError) for error in self.errors.values()
        )


class CacheWriteError(MetricsError):
    """Warm-tier write failed. Logged and surfaced as a warning, never fatal."""


def platform_error_from_dict(data: Dict) -> PlatformError:
    """Rebuild a PlatformError from its to_dict() form."""
    error_types = {
        cls.__name__: cls
        for cls in (PlatformError, CredentialError, TransientFetchError, EmptyResultError)
    }
    error_cls = error_types.get(data.get("type"), PlatformError)
    return error_cls(data.get("message", ""), platform=data.get("platform"))
