"""
Audit Trail Module

Hash-chained audit log with SHA-256 for tamper detection.
Every loan status change and contract event is recorded here.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .storage import StorageInterface, StorageRecord, to_storable


class AuditEventType(Enum):
    """Types of audit events"""
    LOAN_CREATED = "loan_created"
    LOAN_SIGNED = "loan_signed"
    REPAYMENT_CLAIMED = "repayment_claimed"
    REPAYMENT_REJECTED = "repayment_rejected"
    LOAN_PAID = "loan_paid"
    CONTRACT_GENERATED = "contract_generated"
    TRANSITION_REJECTED = "transition_rejected"


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    sequence: int
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'sequence': self.sequence,
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'current_hash': self.current_hash,
            'metadata': self.metadata,
            'user_id': self.user_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._last_sequence = 0
        self._last_hash = ""
        self._load_last_hash()

    def _load_last_hash(self) -> None:
        """Load the sequence and hash of the most recent audit event"""
        events = self._load_events()
        if events:
            self._last_sequence = events[-1].sequence
            self._last_hash = events[-1].current_hash

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited ("loan")
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: Email of the actor who initiated the action

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=self._last_sequence + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash,
                current_hash="",
                metadata=to_storable(metadata or {}),
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())

            # Chain head advances only once the event is stored
            self._last_sequence = event.sequence
            self._last_hash = event.current_hash
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events for one entity, oldest first"""
        events = [
            AuditEvent.from_dict(data)
            for data in self.storage.find(self.table_name, {
                'entity_type': entity_type,
                'entity_id': entity_id
            })
        ]
        events.sort(key=lambda e: e.sequence)
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with 'valid', 'total_events', 'hash_errors' and 'chain_breaks'
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})
            previous_hash = event.current_hash

        return result
