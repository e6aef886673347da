"""Client-visible rejections raised by the matching services.

Routes translate these into ``HTTPException(status_code, detail)``. Conflict
outcomes (existing chain, locked member, lost races) are result values,
not exceptions.
"""


class MatchingError(Exception):
    """Base class for precondition-style rejections."""

    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class PreconditionError(MatchingError):
    """Wrong status, inactive listing, incompatible listing, missing own listing."""

    status_code = 400


class NotFoundError(MatchingError):
    status_code = 404


class PermissionDeniedError(MatchingError):
    """Caller is not a member, not the owner, or not an admin."""

    status_code = 403
