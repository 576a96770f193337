from decimal import Decimal

import pytest

from cooltrack.core.errors import ConflictError, NotFoundError, ValidationError
from cooltrack.models.ledger_entry import LedgerEntry
from cooltrack.models.serialized_unit import SerializedUnit
from cooltrack.services import ledger_service


def _unit(serialized, serial="SN-1001", **overrides):
    data = {
        "serial_number": serial,
        "item_name": "Split AC 1.5HP",
        "brand": "Daikin",
        "model": "FTKM35",
        "category": "aircon",
        "purchase_price": "450.00",
        "sale_price": "700.00",
    }
    data.update(overrides)
    return serialized.add_item(data, "admin-1")


def _entries(db_session, unit_id):
    return (
        db_session.query(LedgerEntry)
        .filter(LedgerEntry.inventory_type == "serialized", LedgerEntry.item_id == unit_id)
        .order_by(LedgerEntry.id.asc())
        .all()
    )


def test_add_item_records_purchase(serialized, publisher, db_session):
    unit = _unit(serialized)

    assert unit.status == "available"
    assert unit.sale_price == Decimal("700.00")

    [entry] = _entries(db_session, unit.id)
    assert entry.transaction_type == "purchase"
    assert entry.quantity_change == Decimal("1.000")
    assert entry.serial_number == "SN-1001"
    assert publisher.names() == ["inventory:serialized-added"]


def test_add_item_validation_and_duplicates(serialized):
    _unit(serialized)

    with pytest.raises(ConflictError):
        _unit(serialized)
    with pytest.raises(ValidationError):
        _unit(serialized, serial="SN-2", brand="")
    with pytest.raises(ValidationError):
        _unit(serialized, serial="SN-3", status="installed")
    with pytest.raises(ValidationError):
        _unit(serialized, serial="SN-4", category="toaster")


def test_install_and_return_cycle(serialized, publisher, db_session):
    unit = _unit(serialized)
    publisher.clear()

    installed = serialized.install_item("SN-1001", 42, 3, "tech-1")
    assert installed.status == "installed"
    assert installed.current_job_id == 42
    assert installed.current_customer_id == 3
    assert installed.installed_date is not None
    assert publisher.events[-1] == (
        "job:42",
        "job:equipment-installed",
        {"serial_number": "SN-1001", "item_name": "Split AC 1.5HP"},
    )

    with pytest.raises(ConflictError):
        serialized.install_item("SN-1001", 43, 3, "tech-1")

    returned = serialized.return_item("SN-1001", "tech-1")
    assert returned.status == "available"
    assert returned.current_job_id is None
    assert returned.current_customer_id is None
    assert returned.installed_date is None

    purchase, install, back = _entries(db_session, unit.id)
    assert install.transaction_type == "installation"
    assert install.quantity_change == Decimal("-1.000")
    assert install.details["previous_status"] == "available"
    assert install.reference_id == "42"
    assert back.transaction_type == "return"
    assert back.quantity_change == Decimal("1.000")
    assert back.details["previous_job_id"] == 42
    assert back.reason == "Job completed"
    assert "job:equipment-returned" in publisher.names()


def test_return_requires_installed(serialized):
    _unit(serialized)
    with pytest.raises(ConflictError):
        serialized.return_item("SN-1001", "tech-1")
    with pytest.raises(NotFoundError):
        serialized.return_item("SN-404", "tech-1")


def test_update_leaving_installed_clears_references(serialized, db_session):
    unit = _unit(serialized)
    serialized.install_item("SN-1001", 42, 3, "tech-1")

    updated = serialized.update_item(unit.id, {"status": "maintenance", "location": "Workshop"}, "admin-1")

    assert updated.status == "maintenance"
    assert updated.location == "Workshop"
    assert updated.current_job_id is None
    assert updated.installed_date is None

    change = _entries(db_session, unit.id)[-1]
    assert change.transaction_type == "status_change"
    assert change.quantity_change == Decimal("1.000")
    assert change.details == {"previous_status": "installed", "new_status": "maintenance"}


def test_update_rejects_serial_change_and_direct_install(serialized):
    unit = _unit(serialized)
    with pytest.raises(ValidationError):
        serialized.update_item(unit.id, {"serial_number": "SN-9"}, "admin-1")
    with pytest.raises(ValidationError):
        serialized.update_item(unit.id, {"status": "installed"}, "admin-1")


def test_metadata_update_writes_no_ledger_entry(serialized, db_session):
    unit = _unit(serialized)
    serialized.update_item(unit.id, {"sale_price": "650"}, "admin-1")

    assert len(_entries(db_session, unit.id)) == 1
    assert serialized.get_by_serial("SN-1001").sale_price == Decimal("650.00")


def test_delete_blocked_while_installed(serialized, db_session):
    unit = _unit(serialized)
    serialized.install_item("SN-1001", 42, None, "tech-1")

    with pytest.raises(ConflictError):
        serialized.delete_item(unit.id)

    serialized.return_item("SN-1001", "tech-1")
    serialized.delete_item(unit.id)
    assert db_session.get(SerializedUnit, unit.id) is None


def test_list_filters_by_status(serialized):
    _unit(serialized, serial="SN-1")
    _unit(serialized, serial="SN-2")
    serialized.install_item("SN-2", 1, None, "tech-1")

    assert [u.serial_number for u in serialized.list_items(status="available")] == ["SN-1"]
    assert [u.serial_number for u in serialized.list_items(status="installed")] == ["SN-2"]


def _balance(db_session, unit_id):
    return ledger_service.reconstructed_value(db_session, item_id=unit_id, inventory_type="serialized")


def test_ledger_balance_tracks_stock_through_manual_status_changes(serialized, db_session):
    unit = _unit(serialized)
    assert _balance(db_session, unit.id) == Decimal("1.000")

    serialized.install_item("SN-1001", 42, None, "tech-1")
    assert _balance(db_session, unit.id) == Decimal("0.000")

    serialized.update_item(unit.id, {"status": "available"}, "admin-1")
    assert _balance(db_session, unit.id) == Decimal("1.000")

    serialized.update_item(unit.id, {"status": "maintenance"}, "admin-1")
    assert _balance(db_session, unit.id) == Decimal("1.000")


def test_return_rejects_unit_installed_on_another_job(serialized):
    _unit(serialized)
    serialized.install_item("SN-1001", 42, None, "tech-1")

    with pytest.raises(ConflictError):
        serialized.return_item("SN-1001", "tech-1", job_id=41)

    assert serialized.get_by_serial("SN-1001").current_job_id == 42
    assert serialized.installed_on("SN-1001", 42) is True
    assert serialized.installed_on("SN-1001", 41) is False
    assert serialized.installed_on("SN-404", 42) is False
