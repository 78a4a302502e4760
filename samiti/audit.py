"""
Audit Trail Module

Append-only, SHA-256 hash-chained log of every state change the society
core makes: registrations, openings, postings, interest runs, imports and
repairs. Tampering with any stored event breaks the chain.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from .storage import StorageInterface, StorageRecord, serialize_value


class AuditEventType(Enum):
    """Types of audit events"""
    MEMBER_REGISTERED = "member_registered"
    MEMBER_STATUS_CHANGED = "member_status_changed"
    
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_STATUS_CHANGED = "account_status_changed"
    ACCOUNT_MATURED = "account_matured"
    
    TRANSACTION_POSTED = "transaction_posted"
    INTEREST_POSTED = "interest_posted"
    
    IMPORT_COMMITTED = "import_committed"
    DATA_REPAIRED = "data_repaired"


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str   # member, account, transaction, import, ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None
    
    def __post_init__(self):
        self.metadata = serialize_value(self.metadata or {})
    
    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        payload = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    
    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            **cls._base_kwargs(data),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data.get('metadata') or {},
            user_id=data.get('user_id'),
        )


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """
    
    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._sequence = 0
        self._last_hash = ""
        self._load_chain_head()
    
    def _load_chain_head(self) -> None:
        """Resume the chain from the newest stored event"""
        events = self._ordered_events()
        if events:
            self._last_hash = events[-1].current_hash
            self._sequence = len(events)
    
    def _ordered_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(d) for d in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: (e.created_at, e.metadata.get('_seq', 0)))
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
        Append an event to the chain
        
        Args:
            event_type: Type of audit event
            entity_type: Kind of entity affected
            entity_id: ID of the entity
            metadata: Event-specific details
            user_id: Operator who initiated the action
            
        Returns:
            The stored AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            self._sequence += 1
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash,
                current_hash="",
                # Sequence keeps ordering stable for events sharing a timestamp
                metadata={**(metadata or {}), '_seq': self._sequence},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            self._last_hash = event.current_hash
            return event
    
    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events for one entity, oldest first"""
        return [e for e in self._ordered_events()
                if e.entity_type == entity_type and e.entity_id == entity_id]
    
    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self._ordered_events() if e.event_type == event_type]
    
    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every event hash and the continuity of the chain
        
        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks``
        """
        result = {'valid': True, 'total_events': 0, 'hash_errors': [], 'chain_breaks': []}
        
        previous_hash = ""
        for position, event in enumerate(self._ordered_events()):
            result['total_events'] += 1
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})
            previous_hash = event.current_hash
        
        return result
    
    def count_events(self) -> int:
        return self.storage.count(self.table_name)
