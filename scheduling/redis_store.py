"""
Redis implementations of the schedule, call and directory stores

Records are stored as hashes with set indexes per patient, mirroring the
relational layout the dashboard reads:
    careline:schedules:{id}             schedule hash
    careline:schedules:active           ids of active schedules
    careline:schedules:patient:{pid}    schedule ids of a patient
    careline:calls:{id} / careline:calls:patient:{pid}
    careline:patients:{id} / careline:prompts:{id} / careline:prompts:patient:{pid}
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis

from utils.redis_atomic import create_atomic_redis_ops, epoch_string

from .errors import NotFoundError
from .models import Call, Patient, Prompt, Schedule
from .store import (
    CALL_UPDATABLE_FIELDS, SCHEDULE_UPDATABLE_FIELDS, CallStore, DirectoryStore,
    ScheduleStore, _check_fields
)

logger = logging.getLogger("redis-store")

# Call fields holding nested structures, stored as JSON strings
CALL_JSON_FIELDS = ("transcript_entries", "artifacts", "analysis")


def to_redis_hash(data: Dict[str, Any], json_fields=()) -> Dict[str, str]:
    """Convert a model dictionary into flat Redis hash values"""
    mapping = {}
    for key, value in data.items():
        if key in json_fields:
            mapping[key] = json.dumps(value)
        elif value is None:
            mapping[key] = ""
        elif isinstance(value, bool):
            mapping[key] = "true" if value else "false"
        else:
            mapping[key] = str(value)
    return mapping


def from_redis_hash(data: Dict[str, str], json_fields=()) -> Dict[str, Any]:
    """Decode JSON-encoded fields of a Redis hash"""
    decoded = dict(data)
    for key in json_fields:
        raw = decoded.get(key)
        decoded[key] = json.loads(raw) if raw else None
    return decoded


def _sorted_newest_first(items):
    return sorted(items, key=lambda item: item.created_at, reverse=True)


class RedisScheduleStore(ScheduleStore):
    """Schedule store backed by Redis hashes with an atomic claim script"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "careline"):
        self.redis_client = redis_client
        self.schedules_key = f"{key_prefix}:schedules"
        self.atomic_ops = create_atomic_redis_ops(redis_client)

    def _key(self, schedule_id: str) -> str:
        return f"{self.schedules_key}:{schedule_id}"

    def _load(self, schedule_id: str) -> Optional[Schedule]:
        data = self.redis_client.hgetall(self._key(schedule_id))
        if not data:
            return None
        try:
            return Schedule.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.error(f"Error deserializing schedule {schedule_id}: {e}")
            return None

    def _load_many(self, schedule_ids) -> List[Schedule]:
        schedules = []
        for schedule_id in schedule_ids:
            schedule = self._load(schedule_id)
            if schedule is not None:
                schedules.append(schedule)
        return schedules

    def _save(self, schedule: Schedule):
        mapping = to_redis_hash(schedule.to_dict())
        mapping["last_executed_ts"] = epoch_string(schedule.last_executed_at)

        pipe = self.redis_client.pipeline()
        pipe.hset(self._key(schedule.id), mapping=mapping)
        pipe.sadd(f"{self.schedules_key}:patient:{schedule.patient_id}", schedule.id)
        if schedule.is_active:
            pipe.sadd(f"{self.schedules_key}:active", schedule.id)
        else:
            pipe.srem(f"{self.schedules_key}:active", schedule.id)
        pipe.execute()

    def list_active_schedules(self) -> List[Schedule]:
        schedule_ids = self.redis_client.smembers(f"{self.schedules_key}:active")
        return [s for s in self._load_many(schedule_ids) if s.is_active]

    def list_patient_schedules(self, patient_id: str) -> List[Schedule]:
        schedule_ids = self.redis_client.smembers(f"{self.schedules_key}:patient:{patient_id}")
        return _sorted_newest_first(self._load_many(schedule_ids))

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        return self._load(schedule_id)

    def create_schedule(self, schedule: Schedule) -> Schedule:
        self._save(schedule)
        logger.info(f"Stored schedule {schedule.id} ({schedule.type.value}) for patient {schedule.patient_id}")
        return schedule

    def update_schedule(self, schedule_id: str, **updates) -> Schedule:
        _check_fields(updates, SCHEDULE_UPDATABLE_FIELDS, "schedule")
        current = self._load(schedule_id)
        if current is None:
            raise NotFoundError("Schedule", schedule_id)
        updated = current.copy_with(**updates)

        # last_executed_at may hold a concurrent claim; write only the requested fields
        mapping = to_redis_hash({k: v for k, v in updated.to_dict().items() if k in updates})
        if "last_executed_at" in updates:
            mapping["last_executed_ts"] = epoch_string(updated.last_executed_at)

        pipe = self.redis_client.pipeline()
        pipe.hset(self._key(schedule_id), mapping=mapping)
        if "is_active" in updates:
            if updated.is_active:
                pipe.sadd(f"{self.schedules_key}:active", schedule_id)
            else:
                pipe.srem(f"{self.schedules_key}:active", schedule_id)
        pipe.execute()
        return updated

    def claim_schedule(self, schedule_id: str, claimed_at: datetime, claim_before: Optional[datetime]) -> bool:
        claimed = self.atomic_ops.claim_schedule(self._key(schedule_id), claimed_at, claim_before)
        if claimed is None:
            raise NotFoundError("Schedule", schedule_id)
        return claimed

    def release_schedule_claim(self, schedule_id: str, claimed_at: datetime, previous: Optional[datetime]) -> bool:
        return self.atomic_ops.release_schedule_claim(self._key(schedule_id), claimed_at, previous)


class RedisCallStore(CallStore):
    """Call store backed by Redis hashes"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "careline"):
        self.redis_client = redis_client
        self.calls_key = f"{key_prefix}:calls"

    def _key(self, call_id: str) -> str:
        return f"{self.calls_key}:{call_id}"

    def _load(self, call_id: str) -> Optional[Call]:
        data = self.redis_client.hgetall(self._key(call_id))
        if not data:
            return None
        try:
            return Call.from_dict(from_redis_hash(data, CALL_JSON_FIELDS))
        except (KeyError, ValueError) as e:
            logger.error(f"Error deserializing call {call_id}: {e}")
            return None

    def _save(self, call: Call):
        pipe = self.redis_client.pipeline()
        pipe.hset(self._key(call.id), mapping=to_redis_hash(call.to_dict(), CALL_JSON_FIELDS))
        pipe.sadd(f"{self.calls_key}:patient:{call.patient_id}", call.id)
        pipe.execute()

    def create_call(self, call: Call) -> Call:
        self._save(call)
        logger.info(f"Saved call {call.id} with status {call.status.value}")
        return call

    def update_call(self, call_id: str, **updates) -> Call:
        _check_fields(updates, CALL_UPDATABLE_FIELDS, "call")
        current = self._load(call_id)
        if current is None:
            raise NotFoundError("Call", call_id)
        for name, value in updates.items():
            setattr(current, name, value)
        self._save(current)
        return current

    def get_call(self, call_id: str) -> Optional[Call]:
        return self._load(call_id)

    def list_patient_calls(self, patient_id: str) -> List[Call]:
        call_ids = self.redis_client.smembers(f"{self.calls_key}:patient:{patient_id}")
        calls = [c for c in (self._load(call_id) for call_id in call_ids) if c is not None]
        return _sorted_newest_first(calls)


class RedisDirectoryStore(DirectoryStore):
    """Patient and prompt lookup backed by Redis hashes"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "careline"):
        self.redis_client = redis_client
        self.patients_key = f"{key_prefix}:patients"
        self.prompts_key = f"{key_prefix}:prompts"

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        data = self.redis_client.hgetall(f"{self.patients_key}:{patient_id}")
        return Patient.from_dict(data) if data else None

    def get_prompt(self, prompt_id: str) -> Optional[Prompt]:
        data = self.redis_client.hgetall(f"{self.prompts_key}:{prompt_id}")
        return Prompt.from_dict(data) if data else None

    def list_patient_prompts(self, patient_id: str) -> List[Prompt]:
        prompt_ids = self.redis_client.smembers(f"{self.prompts_key}:patient:{patient_id}")
        prompts = [p for p in (self.get_prompt(prompt_id) for prompt_id in prompt_ids) if p is not None]
        return _sorted_newest_first(prompts)

    def save_patient(self, patient: Patient) -> Patient:
        self.redis_client.hset(f"{self.patients_key}:{patient.id}", mapping=to_redis_hash(patient.to_dict()))
        return patient

    def save_prompt(self, prompt: Prompt) -> Prompt:
        pipe = self.redis_client.pipeline()
        pipe.hset(f"{self.prompts_key}:{prompt.id}", mapping=to_redis_hash(prompt.to_dict()))
        pipe.sadd(f"{self.prompts_key}:patient:{prompt.patient_id}", prompt.id)
        pipe.execute()
        return prompt
