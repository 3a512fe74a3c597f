"""
Speaker-role attribution (agent vs customer).

- Channel role from dual-channel recordings wins.
- Provider diarization ids map to roles, stable within a session.
- Otherwise a text heuristic guesses turn-taking.

Limitations (see speaker_tracker.py):
- Speaker roles are approximate; the heuristic may misattribute.
- Only two roles: third and later speakers are treated as customers.
"""
from __future__ import annotations

from app.diarization.models import Attribution, AttributionMethod, SpeakerRole
from app.diarization.speaker_tracker import HeuristicSpeakerState, SpeakerAttributor, SpeakerRoleMap

__all__ = [
    "Attribution",
    "AttributionMethod",
    "HeuristicSpeakerState",
    "SpeakerAttributor",
    "SpeakerRole",
    "SpeakerRoleMap",
]
