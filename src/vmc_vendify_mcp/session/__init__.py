"""Session layer: correlation, lifecycle and event streams."""

from .correlator import Correlator, CorrelatorState, PendingRequest
from .events import EventStream
from .manager import ConnectionState, VMCSession
