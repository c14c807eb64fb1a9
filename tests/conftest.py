"""
Pytest configuration and fixtures for care-line scheduling tests
"""
import pytest
import redis
from datetime import date, datetime, timezone
from unittest.mock import Mock

from scheduling.executor import ScheduleExecutor
from scheduling.models import (
    Patient, PrimaryCondition, Prompt, RecurrenceType, Schedule, ScheduleType
)
from scheduling.scheduler import CallScheduler
from scheduling.store import InMemoryCallStore, InMemoryDirectoryStore, InMemoryScheduleStore
from voice.provider import MockVoiceCallProvider


def utc(*args) -> datetime:
    """Build an aware UTC datetime"""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing"""
    return Mock(spec=redis.Redis)


@pytest.fixture
def sample_patient():
    """Sample enrolled CHF patient without a configured timezone"""
    return Patient(
        id="patient-1",
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        phone="(555) 123-4567",
        date_of_birth=date(1950, 3, 10),
        primary_condition=PrimaryCondition.CHF,
        created_at=utc(2024, 1, 1, 0, 0),
    )


@pytest.fixture
def sample_prompt(sample_patient):
    """Sample prompt using every placeholder"""
    return Prompt(
        id="prompt-1",
        patient_id=sample_patient.id,
        name="Daily Wellness Check",
        prompt="Call {{patientName}} ({{patientAge}}) about {{patientCondition}}.",
        created_at=utc(2024, 1, 1, 0, 0),
    )


@pytest.fixture
def directory(sample_patient, sample_prompt):
    """In-memory patient/prompt directory"""
    return InMemoryDirectoryStore(patients=[sample_patient], prompts=[sample_prompt])


@pytest.fixture
def schedule_store():
    return InMemoryScheduleStore()


@pytest.fixture
def call_store():
    return InMemoryCallStore()


@pytest.fixture
def mock_provider():
    """Mock voice provider that accepts calls with status 'queued'"""
    return MockVoiceCallProvider()


@pytest.fixture
def executor(schedule_store, call_store, directory, mock_provider):
    """ScheduleExecutor wired to in-memory stores and the mock provider"""
    return ScheduleExecutor(schedule_store, call_store, directory, mock_provider)


@pytest.fixture
def call_scheduler(schedule_store, call_store, directory, mock_provider):
    """CallScheduler wired to in-memory stores and the mock provider"""
    return CallScheduler(schedule_store, call_store, directory, mock_provider)


@pytest.fixture
def one_time_schedule(sample_patient, sample_prompt):
    """One-time schedule due at 2024-06-01 09:00 UTC"""
    return Schedule(
        id="sched-once",
        patient_id=sample_patient.id,
        prompt_id=sample_prompt.id,
        type=ScheduleType.ONE_TIME,
        scheduled_time=utc(2024, 6, 1, 9, 0),
        created_at=utc(2024, 5, 1, 0, 0),
    )


@pytest.fixture
def daily_schedule(sample_patient, sample_prompt):
    """Daily schedule at 09:00"""
    return Schedule(
        id="sched-daily",
        patient_id=sample_patient.id,
        prompt_id=sample_prompt.id,
        type=ScheduleType.RECURRING,
        scheduled_time=utc(2024, 5, 1, 9, 0),
        recurrence_type=RecurrenceType.DAILY,
        created_at=utc(2024, 5, 1, 0, 0),
    )


@pytest.fixture
def weekly_monday_schedule(sample_patient, sample_prompt):
    """Weekly schedule on Mondays (day_of_week=1) at 09:00"""
    return Schedule(
        id="sched-weekly",
        patient_id=sample_patient.id,
        prompt_id=sample_prompt.id,
        type=ScheduleType.RECURRING,
        scheduled_time=utc(2024, 5, 1, 9, 0),
        recurrence_type=RecurrenceType.WEEKLY,
        day_of_week=1,
        created_at=utc(2024, 5, 1, 0, 0),
    )


@pytest.fixture
def redis_test_db():
    """
    Real Redis connection for integration tests.
    Uses database 15 to avoid conflicts with development data.
    """
    try:
        client = redis.Redis(host='localhost', port=6379, db=15, decode_responses=True)
        client.ping()  # Test connection

        # Clear the test database before each test
        client.flushdb()

        yield client

        # Clean up after test
        client.flushdb()
        client.close()

    except redis.ConnectionError:
        pytest.skip("Redis not available for integration tests")
