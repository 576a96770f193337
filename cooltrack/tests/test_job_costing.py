from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cooltrack.core.dates import as_utc
from cooltrack.core.errors import AuthorizationError, ConflictError, PolicyError, ValidationError
from cooltrack.models.customer import Customer
from cooltrack.services import settings_service
from cooltrack.services.job_service import next_job_number, technician_payout


@pytest.fixture
def copper(grouped):
    grouped.add_stock("Copper Tube", {"unit": "meter", "length": 100, "purchase_price": 10}, "admin-1")
    return grouped.add_stock("Copper Tube", {"length": 50, "purchase_price": 20}, "admin-1")


@pytest.fixture
def aircon(serialized):
    return serialized.add_item(
        {
            "serial_number": "AC-1",
            "item_name": "Split AC",
            "brand": "Daikin",
            "model": "FTKM35",
            "purchase_price": 450,
            "sale_price": 700,
        },
        "admin-1",
    )


def test_costing_totals_follow_materials_and_labor(jobs, make_job, grouped, tech):
    settings_service.update_settings({"default_hourly_rate": 50}, "admin-1")
    grouped.add_stock("Bracket", {"unit": "pcs", "quantity": 20, "purchase_price": 10}, "admin-1")
    job = make_job(total_revenue=1000)

    job = jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Bracket", "quantity": 20}], tech)
    assert job.total_material_cost == Decimal("200.00")
    assert job.total_cost == Decimal("200.00")
    assert job.profit == Decimal("800.00")

    job = jobs.update_labor(job.id, {"hours": 5}, tech)
    assert job.labor_cost == Decimal("250.00")
    assert job.total_cost == Decimal("450.00")
    assert job.profit == Decimal("550.00")


def test_negative_profit_blocks_approval(jobs, make_job, admin):
    job = make_job(total_revenue=0)
    job = jobs.add_additional_cost(job.id, {"description": "Permit", "amount": 10}, admin)
    assert job.profit == Decimal("-10.00")

    with pytest.raises(PolicyError):
        jobs.approve_costing(job.id, None, admin)

    assert jobs.get_job(job.id, admin).costing_approval["is_approved"] is False


def test_approval_snapshots_and_is_admin_only(jobs, make_job, admin, tech, publisher):
    job = make_job(total_revenue=500)

    with pytest.raises(AuthorizationError):
        jobs.approve_costing(job.id, None, tech)

    job = jobs.approve_costing(job.id, "Looks right", admin)
    approval = job.costing_approval
    assert approval["is_approved"] is True
    assert approval["approved_by"] == "admin-1"
    assert approval["profit_at_approval"] == Decimal("500.00")
    assert approval["total_revenue_at_approval"] == Decimal("500.00")
    assert publisher.events[-1][:2] == ("global", "job:costing-approved")

    with pytest.raises(ConflictError):
        jobs.approve_costing(job.id, None, admin)


def test_negative_profit_allowed_when_settings_permit(jobs, make_job, admin):
    settings_service.update_settings({"allow_negative_profit": True}, "admin-1")
    job = make_job(total_revenue=0)
    jobs.add_additional_cost(job.id, {"description": "Permit", "amount": 10}, admin)

    assert jobs.approve_costing(job.id, None, admin).costing_approved is True


def test_create_job_numbers_and_customer_counters(jobs, make_job, customer, db_session, publisher):
    first = make_job()
    second = make_job(type="repair")

    year = datetime.now(timezone.utc).year
    assert first.job_number == f"JOB-{year}-00001"
    assert second.job_number == f"JOB-{year}-00002"
    assert first.customer_name == "Ana Reyes"
    assert first.status == "pending"
    assert db_session.get(Customer, customer.id).total_jobs == 2
    assert publisher.events[-1][:2] == ("dashboard", "job:created")


def test_next_job_number_restarts_each_year():
    now = datetime(2026, 1, 2, tzinfo=timezone.utc)
    assert next_job_number(None, now) == "JOB-2026-00001"
    assert next_job_number("JOB-2026-00041", now) == "JOB-2026-00042"
    assert next_job_number("JOB-2025-00999", now) == "JOB-2026-00001"
    assert next_job_number("garbage", now) == "JOB-2026-00001"


def test_create_job_defaults_revenue_from_settings(make_job):
    settings_service.update_settings({"default_revenue_by_job_type": {"maintenance": "180"}}, "admin-1")

    assert make_job(type="maintenance").total_revenue == Decimal("180.00")
    assert make_job(type="repair").total_revenue == Decimal("0.00")


def test_only_admins_create_jobs(jobs, customer, tech):
    with pytest.raises(AuthorizationError):
        jobs.create_job({"customer_id": customer.id, "type": "repair"}, tech)


def test_create_job_rejects_unknown_type(jobs, customer, admin):
    with pytest.raises(ValidationError):
        jobs.create_job({"customer_id": customer.id, "type": "demolition"}, admin)


def test_status_transitions_and_idempotent_stamps(jobs, make_job, admin, tech, db_session, customer):
    settings_service.update_settings({"require_cost_approval": False}, "admin-1")
    job = make_job(total_revenue=300)

    job = jobs.update_status(job.id, "in_progress", tech)
    started_at = job.started_at
    assert started_at is not None

    job = jobs.update_status(job.id, "in_progress", tech)
    assert as_utc(job.started_at) == as_utc(started_at)

    with pytest.raises(ValidationError):
        jobs.update_status(job.id, "pending", tech)

    job = jobs.update_status(job.id, "completed", tech, {"technician_notes": "Done"})
    assert job.completed_at is not None
    assert job.technician_notes == "Done"

    with pytest.raises(AuthorizationError):
        jobs.update_status(job.id, "paid", tech)

    job = jobs.update_status(job.id, "paid", admin)
    assert job.paid_at is not None
    jobs.update_status(job.id, "paid", admin)

    assert db_session.get(Customer, customer.id).total_revenue == Decimal("300.00")


def test_completion_requires_approved_costing(jobs, make_job, admin, tech):
    job = make_job(total_revenue=300)
    jobs.update_status(job.id, "in_progress", tech)

    with pytest.raises(PolicyError):
        jobs.update_status(job.id, "completed", admin)

    jobs.approve_costing(job.id, None, admin)
    assert jobs.update_status(job.id, "completed", tech).status == "completed"


def test_technician_cannot_touch_unassigned_job(jobs, make_job, other_tech):
    job = make_job()

    with pytest.raises(AuthorizationError):
        jobs.get_job(job.id, other_tech)
    with pytest.raises(AuthorizationError):
        jobs.update_status(job.id, "in_progress", other_tech)
    with pytest.raises(AuthorizationError):
        jobs.update_labor(job.id, {"hours": 1}, other_tech)
    assert jobs.list_jobs(other_tech) == []


def test_labor_is_assigned_technician_only(jobs, make_job, admin):
    job = make_job()
    with pytest.raises(AuthorizationError):
        jobs.update_labor(job.id, {"hours": 2}, admin)


def test_grouped_material_records_allocations(jobs, make_job, copper, tech):
    job = make_job()

    job = jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "copper tube", "length_used": 120}], tech)

    [line] = job.materials
    assert line.item_name == "Copper Tube"
    assert line.unit == "meter"
    assert line.value_used == Decimal("120.000")
    assert line.total_cost == Decimal("1400.00")
    assert line.unit_cost == Decimal("11.67")
    assert [a["amount"] for a in line.lot_allocations] == ["100.000", "20.000"]


def test_removing_material_returns_stock_to_exact_lots(jobs, make_job, copper, grouped, tech, publisher):
    job = make_job()
    jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 120}], tech)

    job = jobs.remove_material(job.id, 0, tech)

    assert job.materials == []
    assert job.total_material_cost == Decimal("0.00")
    item = grouped.get_item_by_name("Copper Tube")
    assert sorted(lot.value for lot in item.lots) == [Decimal("50.000"), Decimal("100.000")]
    assert all(lot.is_active for lot in item.lots)
    assert publisher.names()[-1] == "job:material-removed"


def test_editing_amount_returns_or_consumes_difference(jobs, make_job, copper, grouped, tech):
    job = make_job()
    jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 120}], tech)

    job = jobs.edit_material(job.id, 0, {"length_used": 90}, tech)
    line = job.materials[0]
    assert line.value_used == Decimal("90.000")
    assert line.total_cost == Decimal("900.00")
    assert grouped.get_item_by_name("Copper Tube").total_value == Decimal("60.000")

    job = jobs.edit_material(job.id, 0, {"length_used": 140}, tech)
    line = job.materials[0]
    assert line.value_used == Decimal("140.000")
    assert line.total_cost == Decimal("1800.00")
    assert job.total_material_cost == Decimal("1800.00")
    assert grouped.get_item_by_name("Copper Tube").total_value == Decimal("10.000")


def test_edit_unit_cost_reprices_line(jobs, make_job, copper, tech):
    job = make_job()
    jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 10}], tech)

    job = jobs.edit_material(job.id, 0, {"unit_cost": 12}, tech)

    assert job.materials[0].total_cost == Decimal("120.00")
    assert job.total_material_cost == Decimal("120.00")


def test_amount_edit_keeps_manual_unit_cost(jobs, make_job, copper, grouped, tech):
    job = make_job()
    jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 10}], tech)

    job = jobs.edit_material(job.id, 0, {"unit_cost": 5}, tech)
    assert job.materials[0].unit_cost_overridden is True

    job = jobs.edit_material(job.id, 0, {"length_used": 12}, tech)

    line = job.materials[0]
    assert line.unit_cost == Decimal("5.00")
    assert line.total_cost == Decimal("60.00")
    assert job.total_material_cost == Decimal("60.00")
    assert grouped.get_item_by_name("Copper Tube").total_value == Decimal("138.000")


def test_serialized_material_installs_and_returns_unit(jobs, make_job, aircon, serialized, tech, customer):
    job = make_job(total_revenue=1000)

    job = jobs.add_materials(job.id, [{"inventory_type": "serialized", "serial_number": "AC-1"}], tech)
    assert job.total_material_cost == Decimal("700.00")
    unit = serialized.get_by_serial("AC-1")
    assert unit.status == "installed"
    assert unit.current_job_id == job.id
    assert unit.current_customer_id == customer.id

    with pytest.raises(ValidationError):
        jobs.edit_material(job.id, 0, {"quantity": 2}, tech)

    jobs.remove_material(job.id, 0, tech)
    assert serialized.get_by_serial("AC-1").status == "available"


def test_removing_stale_serialized_line_leaves_unit_on_its_new_job(jobs, make_job, aircon, serialized, admin):
    first = make_job()
    jobs.add_materials(first.id, [{"inventory_type": "serialized", "serial_number": "AC-1"}], admin)
    serialized.update_item(aircon.id, {"status": "available"}, "admin-1")

    second = make_job()
    jobs.add_materials(second.id, [{"inventory_type": "serialized", "serial_number": "AC-1"}], admin)

    first = jobs.remove_material(first.id, 0, admin)

    assert first.materials == []
    unit = serialized.get_by_serial("AC-1")
    assert unit.status == "installed"
    assert unit.current_job_id == second.id
    assert len(jobs.get_job(second.id, admin).materials) == 1


def test_failed_material_line_rolls_back_whole_batch(jobs, make_job, copper, grouped, aircon, serialized, tech):
    job = make_job()

    with pytest.raises(ConflictError):
        jobs.add_materials(
            job.id,
            [
                {"inventory_type": "serialized", "serial_number": "AC-1"},
                {"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 500},
            ],
            tech,
        )

    assert serialized.get_by_serial("AC-1").status == "available"
    assert grouped.get_item_by_name("Copper Tube").total_value == Decimal("150.000")
    assert jobs.get_job(job.id, tech).materials == []


def test_locked_job_rejects_costing_changes(jobs, make_job, copper, admin, tech):
    settings_service.update_settings({"require_cost_approval": False}, "admin-1")
    job = make_job()
    jobs.update_status(job.id, "in_progress", tech)
    jobs.update_status(job.id, "completed", tech)

    with pytest.raises(ConflictError):
        jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 1}], tech)
    with pytest.raises(ConflictError):
        jobs.update_labor(job.id, {"hours": 3}, tech)
    with pytest.raises(ConflictError):
        jobs.update_revenue(job.id, {"base_revenue": 10}, admin)
    with pytest.raises(ConflictError):
        jobs.add_additional_cost(job.id, {"description": "Parking", "amount": 5}, admin)


def test_labor_rate_and_override(jobs, make_job, admin, tech):
    settings_service.update_settings(
        {"default_hourly_rate": 40, "hourly_rates_by_job_type": {"installation": 60}},
        "admin-1",
    )
    job = make_job(total_revenue=1000)

    job = jobs.update_labor(job.id, {"hours": 2}, tech)
    assert job.labor_cost == Decimal("120.00")

    job = jobs.update_labor_rate(job.id, {"rate_per_hour": 75}, admin)
    assert job.labor_cost == Decimal("150.00")

    job = jobs.update_labor_rate(job.id, {"override_total_cost": 99}, admin)
    assert job.labor_overridden is True
    assert job.labor_cost == Decimal("99.00")
    assert job.profit == Decimal("901.00")

    job = jobs.update_labor(job.id, {"hours": 4}, tech)
    assert job.labor_cost == Decimal("99.00")

    job = jobs.update_labor_rate(job.id, {"remove_override": True}, admin)
    assert job.labor_cost == Decimal("300.00")

    with pytest.raises(AuthorizationError):
        jobs.update_labor_rate(job.id, {"rate_per_hour": 1}, tech)


def test_technician_payout_modes(jobs, make_job, admin, tech, db_session):
    job = make_job(total_revenue=1000)
    jobs.add_additional_cost(job.id, {"description": "Crane", "amount": 400}, admin)
    settings = settings_service.get_settings(db_session)

    job = jobs.update_technician_payment(job.id, {"calculation_type": "percentage_revenue", "percentage": 10}, admin)
    assert technician_payout(job, settings)["amount"] == Decimal("100.00")

    job = jobs.update_technician_payment(job.id, {"calculation_type": "percentage_profit", "percentage": 50}, admin)
    assert technician_payout(job, settings)["amount"] == Decimal("300.00")

    job = jobs.update_technician_payment(job.id, {"calculation_type": "fixed", "fixed_amount": 80}, admin)
    assert technician_payout(job, settings)["amount"] == Decimal("80.00")

    job = jobs.update_technician_payment(job.id, {"override_amount": 55}, admin)
    payout = technician_payout(job, settings)
    assert payout == {"calculation_type": "fixed", "amount": Decimal("55.00"), "is_overridden": True}

    with pytest.raises(ValidationError):
        jobs.update_technician_payment(job.id, {"percentage": 150}, admin)
    with pytest.raises(AuthorizationError):
        jobs.update_technician_payment(job.id, {"fixed_amount": 1}, tech)


def test_cost_breakdown(jobs, make_job, copper, admin, tech):
    job = make_job(total_revenue=2000)
    jobs.add_materials(job.id, [{"inventory_type": "grouped", "item_name": "Copper Tube", "length_used": 10}], tech)
    jobs.add_additional_cost(job.id, {"description": "Parking", "amount": 15}, tech)

    breakdown = jobs.cost_breakdown(job.id, admin)

    assert breakdown["materials"][0]["total_cost"] == Decimal("100.00")
    assert breakdown["total_additional_cost"] == Decimal("15.00")
    assert breakdown["total_cost"] == Decimal("115.00")
    assert breakdown["profit"] == Decimal("1885.00")
    assert breakdown["technician_payment"]["calculation_type"] == "hourly"


def test_additional_cost_validation_and_removal(jobs, make_job, admin):
    job = make_job(total_revenue=100)

    with pytest.raises(ValidationError):
        jobs.add_additional_cost(job.id, {"description": "Zero", "amount": 0}, admin)

    jobs.add_additional_cost(job.id, {"description": "Tolls", "amount": 12.5}, admin)
    job = jobs.remove_additional_cost(job.id, 0, admin)
    assert job.additional_costs == []
    assert job.total_cost == Decimal("0.00")

    with pytest.raises(ValidationError):
        jobs.remove_additional_cost(job.id, 0, admin)
