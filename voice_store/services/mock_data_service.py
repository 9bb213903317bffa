# voice_store/services/mock_data_service.py
import copy
import random
import re
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..adapters.base import DatabaseAdapter
from ..database import generate_id
from ..demo_schemas import MockDataPool, MockDataPoolType, POOL_RECORD_MODELS

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


def _digits(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def _pool_type(pool_type) -> MockDataPoolType:
    return pool_type if isinstance(pool_type, MockDataPoolType) else MockDataPoolType(pool_type)


class MockDataService:
    """Runtime view of a demo configuration's mock data pools.

    Tool handlers read and edit records here during a demo call. Edits live
    only in this object; the stored pools are never written back.
    """

    def __init__(self, adapter: Optional[DatabaseAdapter] = None):
        self.adapter = adapter
        self.demo_config_id: Optional[str] = None
        self._pools: Dict[MockDataPoolType, MockDataPool] = {}

    # ==================== LOADING ====================

    def load_pools(self, pools: List[MockDataPool]) -> None:
        self._pools = {pool.pool_type: pool.model_copy(deep=True) for pool in pools}
        logger.info("mock_pools_loaded", pools=len(pools))

    def load_config(self, config_id: str) -> int:
        """Load the pools stored for ``config_id``; returns how many were found."""
        if self.adapter is None:
            raise RuntimeError("MockDataService was created without an adapter")
        pools = self.adapter.list_mock_data_pools(config_id)
        self.load_pools(pools)
        self.demo_config_id = config_id
        return len(pools)

    def has_data(self) -> bool:
        return bool(self._pools)

    def clear(self) -> None:
        self._pools = {}
        self.demo_config_id = None

    # ==================== GENERIC ACCESS ====================

    def get_pool(self, pool_type) -> List[Record]:
        pool = self._pools.get(_pool_type(pool_type))
        if pool is None:
            logger.debug("mock_pool_missing", pool_type=str(pool_type))
            return []
        return pool.records

    def find_record(self, pool_type, predicate: Callable[[Record], bool]) -> Optional[Record]:
        return next((record for record in self.get_pool(pool_type) if predicate(record)), None)

    def find_records(self, pool_type, predicate: Callable[[Record], bool]) -> List[Record]:
        return [record for record in self.get_pool(pool_type) if predicate(record)]

    def get_by_id(self, pool_type, record_id: str) -> Optional[Record]:
        return self.find_record(pool_type, lambda record: record.get("id") == record_id)

    def get_random_record(self, pool_type) -> Optional[Record]:
        records = self.get_pool(pool_type)
        return random.choice(records) if records else None

    def add_record(self, pool_type, record: Record) -> Optional[Record]:
        """Validated against the pool's record model; an id is generated when missing."""
        pool_type = _pool_type(pool_type)
        pool = self._pools.get(pool_type)
        if pool is None:
            logger.error("mock_pool_missing_for_add", pool_type=pool_type.value)
            return None
        record = copy.deepcopy(record)
        record.setdefault("id", self.generate_id(pool_type))
        POOL_RECORD_MODELS[pool_type].model_validate(record)
        pool.records.append(record)
        return record

    def update_record(self, pool_type, record_id: str, updates: Record) -> Optional[Record]:
        pool_type = _pool_type(pool_type)
        records = self.get_pool(pool_type)
        for index, record in enumerate(records):
            if record.get("id") == record_id:
                merged = {**record, **updates}
                POOL_RECORD_MODELS[pool_type].model_validate(merged)
                records[index] = merged
                return merged
        logger.warning("mock_record_not_found", pool_type=pool_type.value, record_id=record_id)
        return None

    def remove_record(self, pool_type, record_id: str) -> bool:
        records = self.get_pool(pool_type)
        for index, record in enumerate(records):
            if record.get("id") == record_id:
                del records[index]
                return True
        return False

    def get_pool_stats(self) -> Dict[str, int]:
        return {pool_type.value: len(pool.records) for pool_type, pool in self._pools.items()}

    @staticmethod
    def generate_id(pool_type) -> str:
        return generate_id(_pool_type(pool_type).value[:3].upper())

    # ==================== NEMT LOOKUPS ====================

    def find_member_by_id(self, member_id: str) -> Optional[Record]:
        wanted = member_id.lower()
        return self.find_record(MockDataPoolType.members, lambda m: str(m.get("member_id", "")).lower() == wanted)

    def find_member_by_phone(self, phone: str) -> Optional[Record]:
        wanted = _digits(phone)
        return self.find_record(MockDataPoolType.members, lambda m: _digits(m.get("phone")) == wanted)

    def search_facilities(self, query: str) -> List[Record]:
        wanted = query.lower()
        return self.find_records(
            MockDataPoolType.facilities,
            lambda f: wanted in f.get("name", "").lower() or wanted in f.get("address", "").lower(),
        )

    def find_ride_by_confirmation(self, confirmation_number: str) -> Optional[Record]:
        wanted = confirmation_number.lower()
        return self.find_record(
            MockDataPoolType.rides, lambda r: str(r.get("confirmation_number", "")).lower() == wanted
        )

    def get_rides_for_member(self, member_id: str) -> List[Record]:
        wanted = member_id.lower()
        return self.find_records(MockDataPoolType.rides, lambda r: str(r.get("member_id", "")).lower() == wanted)

    def search_addresses(self, query: str, city: Optional[str] = None) -> List[Record]:
        wanted = query.lower()

        def matches(address: Record) -> bool:
            if wanted not in address.get("street", "").lower():
                return False
            return city is None or (address.get("city") or "").lower() == city.lower()

        return self.find_records(MockDataPoolType.addresses, matches)

    # ==================== DENTAL LOOKUPS ====================

    def find_patient_by_phone(self, phone: str) -> Optional[Record]:
        """Exact digits match, or a stored number ending in the given digits."""
        wanted = _digits(phone)
        if not wanted:
            return None
        return self.find_record(MockDataPoolType.patients, lambda p: _digits(p.get("phone")).endswith(wanted))

    def get_children_for_patient(self, patient_id: str) -> List[Record]:
        return self.find_records(MockDataPoolType.children, lambda c: c.get("patient_id") == patient_id)

    def get_available_slots(self, date: str, time_range: Optional[str] = None) -> List[Record]:
        return self.find_records(
            MockDataPoolType.available_slots,
            lambda s: s.get("date") == date and (time_range is None or s.get("time_range") == time_range),
        )

    def get_appointments_for_patient(self, patient_id: str) -> List[Record]:
        return self.find_records(MockDataPoolType.appointments, lambda a: a.get("patient_id") == patient_id)
