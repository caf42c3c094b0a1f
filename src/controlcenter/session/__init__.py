"""Session control for controlcenter.

Implements the reconnect-and-heartbeat state machine, peer presence
tracking, the camera registry and routing of protocol lines.

Public API:
    SessionController -- The session state machine
    Timer -- Cancellable loop timer
"""

from controlcenter.session.controller import SessionController
from controlcenter.session.timers import Timer

__all__ = ["SessionController", "Timer"]
