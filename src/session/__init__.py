"""
Scan Session Module for Identity Extraction System.

This module drives captures through the extraction pipeline:
    - Per-capture state machine with generation guards
    - Stage wiring (normalize, recognize, classify, extract, validate)
    - Result and state listeners

Author: ML Engineering Team
"""

from .state import ScanSession, ScanState, StateChange, ALLOWED_TRANSITIONS
from .pipeline import ScanPipeline
from .manager import ScanSessionManager, SessionHandle

__all__ = [
    'ScanSession',
    'ScanState',
    'StateChange',
    'ALLOWED_TRANSITIONS',
    'ScanPipeline',
    'ScanSessionManager',
    'SessionHandle',
]
