from cooltrack.models.app_settings import AppSettings
from cooltrack.models.customer import Customer
from cooltrack.models.event_outbox import EventOutbox
from cooltrack.models.grouped_item import GroupedItem, StockLot
from cooltrack.models.job import Job, JobAdditionalCost, JobMaterial
from cooltrack.models.ledger_entry import LedgerEntry
from cooltrack.models.serialized_unit import SerializedUnit

__all__ = [
    "AppSettings",
    "Customer",
    "EventOutbox",
    "GroupedItem",
    "Job",
    "JobAdditionalCost",
    "JobMaterial",
    "LedgerEntry",
    "SerializedUnit",
    "StockLot",
]
