"""
Strategies for folding an incoming edit into the shared document.

The session keeps a single full-text buffer and no operation history, so the
only strategy shipped is wholesale replacement: the last write received by the
server wins. Concurrent writers can overwrite each other; clients narrow the
window by debouncing (about 500ms after the last keystroke) before pushing.
A CRDT/OT strategy would plug in here without touching the lifecycle manager
or the relay.
"""
from abc import ABC, abstractmethod


class DocumentMerge(ABC):
    @abstractmethod
    def merge(self, current: str, incoming: str, participant_id: str) -> str:
        """Return the new document text"""


class LastWriteWins(DocumentMerge):
    def merge(self, current: str, incoming: str, participant_id: str) -> str:
        return incoming
