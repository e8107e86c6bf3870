"""
Error Taxonomy
==============

Base class for every error the subsystem surfaces to callers.

Security Notes:
- ``public_message`` is the only text ever shown to a client
- Internal detail (storage paths, driver errors) stays in ``str(exc)``
  and in the local logs
"""

from __future__ import annotations

from typing import Final, Optional


GENERIC_MESSAGE: Final[str] = "Request could not be completed"


class MasterGuardError(Exception):
    """
    Base error with a stable, non-leaking classification.

    Attributes:
        code: Stable machine-readable classification
        public_message: Safe text for clients
        status: HTTP status used by the web layer
        retry_after: Optional seconds until a retry may succeed
    """

    code: str = "error"
    public_message: str = GENERIC_MESSAGE
    status: int = 500

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message or self.public_message)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, object]:
        """Client-facing representation."""
        data: dict[str, object] = {
            "error": self.code,
            "message": self.public_message,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data
