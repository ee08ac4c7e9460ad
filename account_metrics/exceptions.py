"""Exceptions."""

from werkzeug.exceptions import ServiceUnavailable


class ERRNO:
    """Error numbers reported to clients alongside the HTTP status."""

    FEATURE_NOT_ENABLED = 202


class FeatureNotEnabled(ServiceUnavailable):
    """An operation was disabled by configuration."""

    errno = ERRNO.FEATURE_NOT_ENABLED
    description = 'Feature not enabled'

    def to_dict(self) -> dict:
        """Get the body of the error response."""
        return {
            'code': self.code,
            'errno': self.errno,
            'error': self.name,
            'message': self.description
        }
