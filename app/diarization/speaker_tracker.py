"""
Speaker attribution: maps each transcribed chunk to agent or customer.

Decision order, first applicable rule wins:
1. role derived from the audio channel (dual-channel recordings);
2. provider diarization id, resolved through a session-stable SpeakerRoleMap;
3. a stateful linguistic heuristic, used only when no diarization is available.

All state is owned by the caller's session; nothing here is module-global.

Limitations (MUST be kept in sync with product behavior):
- The heuristic is best-effort and may misattribute turns.
- Multi-party calls lose information: every speaker after the second is a customer.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.diarization.models import Attribution, AttributionMethod, SpeakerRole

logger = logging.getLogger(__name__)

GREETING_PATTERN = re.compile(r"\b(hello|hi|good morning|good afternoon|thank you for calling)\b", re.IGNORECASE)

# Short replies after a long run usually mean the other party took the turn
SHORT_REPLY_WORDS = 8
SHORT_REPLY_MIN_RUN = 2
MAX_RUN = 4
GREETING_MAX_CHUNK_INDEX = 3


class SpeakerRoleMap:
    """
    raw diarization id -> role for one session. Bindings are permanent:
    first unseen id -> agent, every later unseen id -> customer.
    """

    def __init__(self) -> None:
        self._roles: dict[int, SpeakerRole] = {}

    def resolve(self, raw_speaker_id: int) -> SpeakerRole:
        role = self._roles.get(raw_speaker_id)
        if role is not None:
            return role
        if not self._roles:
            role = SpeakerRole.AGENT
        else:
            role = SpeakerRole.CUSTOMER
            if len(self._roles) >= 2:
                logger.warning(
                    "Speaker %s is the %d-th distinct speaker; collapsing into %s",
                    raw_speaker_id,
                    len(self._roles) + 1,
                    role.value,
                )
        self._roles[raw_speaker_id] = role
        return role

    def as_dict(self) -> dict[int, str]:
        return {speaker: role.value for speaker, role in self._roles.items()}

    def __len__(self) -> int:
        return len(self._roles)


@dataclass
class HeuristicSpeakerState:
    """Per-session heuristic memory. Reset only by creating a new session."""

    last_speaker: SpeakerRole = SpeakerRole.AGENT
    consecutive_same_speaker_count: int = 0

    def infer(self, text: str, chunk_index: int) -> SpeakerRole:
        """Guess the speaker of a chunk from its text and position; updates state."""
        if chunk_index == 0:
            return self._switch_to(SpeakerRole.AGENT)

        count = self.consecutive_same_speaker_count
        if "?" in text and count > 0:
            return self._switch_to(self.last_speaker.other)
        if GREETING_PATTERN.search(text) and chunk_index < GREETING_MAX_CHUNK_INDEX:
            self.last_speaker = SpeakerRole.AGENT
            self.consecutive_same_speaker_count += 1
            return self.last_speaker
        if len(text.split()) < SHORT_REPLY_WORDS and count > SHORT_REPLY_MIN_RUN:
            return self._switch_to(self.last_speaker.other)
        if count > MAX_RUN:
            return self._switch_to(self.last_speaker.other)

        self.consecutive_same_speaker_count += 1
        return self.last_speaker

    def _switch_to(self, role: SpeakerRole) -> SpeakerRole:
        self.last_speaker = role
        self.consecutive_same_speaker_count = 1
        return role


class SpeakerAttributor:
    """Applies the three attribution rules against one session's state."""

    def __init__(self, role_map: SpeakerRoleMap | None = None, heuristic: HeuristicSpeakerState | None = None) -> None:
        self.role_map = role_map or SpeakerRoleMap()
        self.heuristic = heuristic or HeuristicSpeakerState()

    def attribute(
        self,
        text: str,
        chunk_index: int,
        raw_speaker_id: int | None = None,
        channel_role: SpeakerRole | None = None,
    ) -> Attribution:
        if channel_role is not None:
            return Attribution(SpeakerRole(channel_role), AttributionMethod.CHANNEL, raw_speaker_id)
        if raw_speaker_id is not None:
            role = self.role_map.resolve(raw_speaker_id)
            logger.debug("Diarization: speaker %s -> %s", raw_speaker_id, role.value)
            return Attribution(role, AttributionMethod.DIARIZATION, raw_speaker_id)

        role = self.heuristic.infer(text, chunk_index)
        logger.debug(
            "Heuristic attribution: %s (consecutive: %d)", role.value, self.heuristic.consecutive_same_speaker_count
        )
        return Attribution(role, AttributionMethod.HEURISTIC)
