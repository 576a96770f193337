from functools import lru_cache

from cooltrack.services.events import get_event_publisher
from cooltrack.services.file_storage import LocalFileStorage
from cooltrack.services.grouped_inventory_service import GroupedInventoryService
from cooltrack.services.job_service import JobService
from cooltrack.services.serialized_inventory_service import SerializedInventoryService


@lru_cache
def get_grouped_service() -> GroupedInventoryService:
    return GroupedInventoryService(get_event_publisher())


@lru_cache
def get_serialized_service() -> SerializedInventoryService:
    return SerializedInventoryService(get_event_publisher())


@lru_cache
def get_job_service() -> JobService:
    return JobService(
        get_event_publisher(),
        grouped=get_grouped_service(),
        serialized=get_serialized_service(),
    )


@lru_cache
def get_file_storage() -> LocalFileStorage:
    return LocalFileStorage()
