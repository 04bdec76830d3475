"""Activity-to-record sync pipeline.

Capture -> aggregate -> synthesize -> publish, driven by SyncScheduler.
"""

from src.clv.tracking.capture import EventCapture
from src.clv.tracking.insights import aggregate
from src.clv.tracking.publisher import DualSinkPublisher
from src.clv.tracking.scheduler import SyncScheduler
from src.clv.tracking.signals import ConnectivityMonitor, IdentityProvider
from src.clv.tracking.synthesizer import (
    ACTIVITY_TRACKING,
    DATA_SYNC,
    InvalidIdentityError,
    ValueBaseline,
    synthesize,
)

__all__ = [
    "ACTIVITY_TRACKING",
    "DATA_SYNC",
    "ConnectivityMonitor",
    "DualSinkPublisher",
    "EventCapture",
    "IdentityProvider",
    "InvalidIdentityError",
    "SyncScheduler",
    "ValueBaseline",
    "aggregate",
    "synthesize",
]
