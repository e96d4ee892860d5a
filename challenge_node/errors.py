from __future__ import annotations


class NotFoundError(LookupError):
    """A referenced participant, performance, challenge or user does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class ConnectionClosedError(ConnectionError):
    """The live transport reports the peer connection as gone."""
