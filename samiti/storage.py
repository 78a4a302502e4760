"""
Storage Backend Module

Abstract persistence collaborator plus an in-memory implementation. The
society core only assumes idempotent upserts keyed by entity id: single
record, batch by kind, and batch delete by id list. All monetary values are
stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import ClassVar, Dict, Iterable, List, Optional, Any, Tuple
from decimal import Decimal
from datetime import date, datetime
from enum import Enum
import json
import threading
from dataclasses import dataclass, fields


def serialize_value(value: Any) -> Any:
    """Convert a field value into its JSON-safe storage form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    return value


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime
    
    # Fields persisted elsewhere (e.g. an account's transaction history)
    TRANSIENT_FIELDS: ClassVar[Tuple[str, ...]] = ()
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = {}
        for f in fields(self):
            if f.name in self.TRANSIENT_FIELDS:
                continue
            result[f.name] = serialize_value(getattr(self, f.name))
        return result
    
    @classmethod
    def _base_kwargs(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Decode the common id/timestamp columns"""
        created_at = data['created_at']
        updated_at = data['updated_at']
        return {
            'id': data['id'],
            'created_at': datetime.fromisoformat(created_at) if isinstance(created_at, str) else created_at,
            'updated_at': datetime.fromisoformat(updated_at) if isinstance(updated_at, str) else updated_at,
        }


class StorageInterface(ABC):
    """Abstract interface for storage backends"""
    
    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Upsert a record"""
        pass
    
    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass
    
    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass
    
    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass
    
    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass
    
    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass
    
    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass
    
    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass
    
    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass
    
    def save_many(self, table: str, records: Iterable[Dict[str, Any]]) -> int:
        """
        Batch upsert records keyed by their ``id`` field
        
        Returns:
            Number of records written
        """
        written = 0
        for record in records:
            self.save(table, record['id'], record)
            written += 1
        return written
    
    def delete_many(self, table: str, record_ids: Iterable[str]) -> int:
        """
        Batch delete by id list. Unknown ids are ignored.
        
        Returns:
            Number of records actually deleted
        """
        return sum(1 for record_id in record_ids if self.delete(table, record_id))
    

class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing and single-process use"""
    
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
    
    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}
    
    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy through JSON so callers never share state with the store
        return json.loads(json.dumps(data, default=str))
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = self._copy(data)
    
    def save_many(self, table: str, records: Iterable[Dict[str, Any]]) -> int:
        with self._lock:
            self._ensure_table(table)
            copies = [self._copy(record) for record in records]
            for record in copies:
                self._data[table][record['id']] = record
            return len(copies)
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False
    
    def delete_many(self, table: str, record_ids: Iterable[str]) -> int:
        with self._lock:
            return super().delete_many(table, record_ids)
    
    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(self._copy(record))
            return results
    
    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])
    
    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}
    
    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass
