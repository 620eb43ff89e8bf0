"""Common enums used across schemas."""

from enum import Enum


class SessionState(str, Enum):
    """Captioning session lifecycle states.

    State Transition Flow:

    CREATED → STARTING → LIVE → STOPPING → STOPPED
       ↓         ↓        ↓        ↓
              ERRORED (unrecoverable failure)

    State Descriptions:
    - CREATED: Session record allocated, stream not consumed yet.
    - STARTING: Stream opened, waiting for the first audio chunk.
    - LIVE: First chunk received; chunks are transcribed, translated and released.
    - STOPPING: Stop requested or stream ended; in-flight chunks drain.
    - STOPPED: Finalized after a stop or the end of the stream.
    - ERRORED: Finalized after an unrecoverable failure (source lost, too many failed chunks).

    Terminal states (no further transitions): STOPPED, ERRORED
    """

    CREATED = "created"
    STARTING = "starting"
    LIVE = "live"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERRORED = "errored"

    def __str__(self) -> str:
        return self.value


__all__ = ["SessionState"]
