"""Beanie ODM schemas for MongoDB collections.

Documents are imported from their modules (`livecast.schemas.caption`,
`livecast.schemas.session_record`); this package only re-exports the
dependency-free session state enum.
"""

from .session_state import SessionState

__all__ = ["SessionState"]
