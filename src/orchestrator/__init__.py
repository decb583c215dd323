"""Orchestrator module - voice session lifecycle.

Provides:
- VoiceSessionOrchestrator: one live voice conversation at a time
- ConnectionStateMachine: 5-state connection FSM
- TranscriptReconciler: deltas → interim text → finalized history
- GreetingTimer: cancellable delayed greeting
"""

from src.orchestrator.greeting import GreetingSynthesizer, GreetingTimer
from src.orchestrator.orchestrator import VoiceSessionOrchestrator, create_orchestrator
from src.orchestrator.state_machine import ConnectionState, ConnectionStateMachine
from src.orchestrator.transcript import Speaker, TranscriptEntry, TranscriptReconciler

__all__ = [
    # Session
    "VoiceSessionOrchestrator",
    "create_orchestrator",
    # State machine
    "ConnectionState",
    "ConnectionStateMachine",
    # Transcript
    "Speaker",
    "TranscriptEntry",
    "TranscriptReconciler",
    # Greeting
    "GreetingSynthesizer",
    "GreetingTimer",
]
