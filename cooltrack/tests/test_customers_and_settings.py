from decimal import Decimal

import pytest

from cooltrack.core.errors import ConflictError, NotFoundError, ValidationError
from cooltrack.services import customer_service, settings_service


def test_customer_crud(customer):
    updated = customer_service.update_customer(customer.id, {"phone": "555-0199", "company": "Reyes Bakery"})
    assert updated.phone == "555-0199"
    assert updated.company == "Reyes Bakery"

    found = customer_service.list_customers(search="REYES")
    assert [c.id for c in found] == [customer.id]

    customer_service.delete_customer(customer.id)
    with pytest.raises(NotFoundError):
        customer_service.get_customer(customer.id)


def test_customer_email_is_unique_case_insensitively(customer):
    with pytest.raises(ConflictError):
        customer_service.create_customer(
            {"name": "Other", "email": "ANA@example.com", "phone": "1", "address": "2"}
        )


def test_customer_requires_contact_fields():
    with pytest.raises(ValidationError):
        customer_service.create_customer({"name": "No Phone", "email": "np@example.com", "address": "x"})


def test_customer_with_jobs_cannot_be_deleted(customer, make_job):
    make_job()
    with pytest.raises(ConflictError):
        customer_service.delete_customer(customer.id)


def test_counters_are_not_editable(customer):
    updated = customer_service.update_customer(customer.id, {"total_jobs": 99, "total_revenue": 5})
    assert updated.total_jobs == 0
    assert updated.total_revenue == Decimal("0")


def test_settings_defaults_and_update(db_session):
    settings = settings_service.get_settings(db_session)
    assert settings.require_cost_approval is True
    assert settings.allow_negative_profit is False
    assert settings.technician_payment_type == "hourly"
    db_session.commit()

    row = settings_service.update_settings(
        {"hourly_rates_by_job_type": {"repair": 65}, "technician_payment_type": "fixed"},
        "admin-1",
    )
    assert row.hourly_rates_by_job_type == {"repair": "65.00"}
    assert settings_service.hourly_rate_for(row, "repair") == Decimal("65.00")
    assert settings_service.hourly_rate_for(row, "inspection") == Decimal("0.00")
    assert row.updated_by == "admin-1"


@pytest.mark.parametrize(
    "patch",
    [
        {"default_hourly_rate": -1},
        {"hourly_rates_by_job_type": {"teleport": 10}},
        {"technician_payment_type": "barter"},
    ],
)
def test_settings_validation(patch):
    with pytest.raises(ValidationError):
        settings_service.update_settings(patch, "admin-1")
