"""
Speaker-role structures for the attribution pipeline.

Only two roles exist: the agent who answers the call and the customer.
Extra diarization speakers collapse into the customer role (see SpeakerRoleMap).
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SpeakerRole(str, Enum):
    AGENT = "agent"
    CUSTOMER = "customer"

    @property
    def other(self) -> "SpeakerRole":
        return SpeakerRole.CUSTOMER if self is SpeakerRole.AGENT else SpeakerRole.AGENT


class AttributionMethod(str, Enum):
    CHANNEL = "channel"
    DIARIZATION = "diarization"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class Attribution:
    """Role chosen for one chunk and which rule decided it."""

    role: SpeakerRole
    method: AttributionMethod
    raw_speaker_id: int | None = None
