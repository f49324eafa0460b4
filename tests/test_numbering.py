from __future__ import annotations

import re
from datetime import date, timedelta

import pytest

from invoicing.errors import (
    InvalidInvoiceNumberError,
    SequenceExhaustedError,
    SequenceStateError,
)
from invoicing.models.numbering import InvoiceNumberSequence
from invoicing.services.numbering import (
    INVOICE_NUMBER_PATTERN,
    NumberingService,
    invoice_number_suffix,
    is_valid_invoice_number,
    next_invoice_number,
    validate_invoice_number,
)
from invoicing.settings import load_settings

TODAY = date(2024, 1, 2)
FIXED_DAY = date(2024, 3, 15)


def test_monotonic_counts_up_from_zero() -> None:
    seq = InvoiceNumberSequence()
    issued = []
    for _ in range(12):
        number, seq = next_invoice_number(seq, "MONOTONIC", TODAY)
        issued.append(number)

    assert issued == [f"#{i:03d}" for i in range(1, 13)]
    assert issued[0] == "#001"
    assert len(set(issued)) == len(issued)
    assert seq.counter == 12


def test_monotonic_ignores_the_date() -> None:
    seq = InvoiceNumberSequence(last_issued_date=TODAY - timedelta(days=3), counter=41)

    number, updated = next_invoice_number(seq, "MONOTONIC", TODAY)

    assert number == "#042"
    assert updated.last_issued_date == TODAY


def test_monotonic_widens_past_999() -> None:
    number, _ = next_invoice_number(InvoiceNumberSequence(counter=999), "MONOTONIC", TODAY)

    assert number == "#1000"
    assert is_valid_invoice_number(number)


def test_daily_reset_on_new_day() -> None:
    seq = InvoiceNumberSequence(last_issued_date=TODAY - timedelta(days=1), counter=7)

    number, updated = next_invoice_number(seq, "DAILY_RESET", TODAY)

    assert number == "INV-20240102-001"
    assert updated.counter == 1
    assert updated.last_issued_date == TODAY


def test_daily_increments_within_the_day() -> None:
    seq = InvoiceNumberSequence(last_issued_date=TODAY, counter=7)

    number, updated = next_invoice_number(seq, "DAILY_RESET", TODAY)

    assert number == "INV-20240102-008"
    assert updated.counter == 8


def test_first_daily_number() -> None:
    number, _ = next_invoice_number(InvoiceNumberSequence(), "DAILY_RESET", TODAY)

    assert number == "INV-20240102-001"


def test_daily_overflow_is_rejected() -> None:
    seq = InvoiceNumberSequence(last_issued_date=TODAY, counter=999)

    with pytest.raises(SequenceExhaustedError):
        next_invoice_number(seq, "DAILY_RESET", TODAY)

    # next day starts over
    number, _ = next_invoice_number(seq, "DAILY_RESET", TODAY + timedelta(days=1))
    assert number == "INV-20240103-001"


def test_input_sequence_is_not_mutated() -> None:
    seq = InvoiceNumberSequence(counter=3)

    next_invoice_number(seq, "MONOTONIC", TODAY)

    assert seq.counter == 3
    assert seq.last_issued_date is None


def test_negative_counter_is_fatal() -> None:
    with pytest.raises(SequenceStateError):
        next_invoice_number(InvoiceNumberSequence(counter=-1), "MONOTONIC", TODAY)


def test_unknown_policy_is_fatal() -> None:
    with pytest.raises(SequenceStateError):
        next_invoice_number(InvoiceNumberSequence(), "YEARLY", TODAY)  # type: ignore[arg-type]


@pytest.mark.parametrize("policy", ["MONOTONIC", "DAILY_RESET"])
def test_generated_numbers_pass_the_format_gate(policy) -> None:
    seq = InvoiceNumberSequence()
    day = TODAY
    for i in range(30):
        if i % 7 == 0:
            day += timedelta(days=1)
        number, seq = next_invoice_number(seq, policy, day)
        assert re.match(INVOICE_NUMBER_PATTERN, number)
        assert validate_invoice_number(number) == number


@pytest.mark.parametrize("value", ["INV-20240102-001", "INV-99999999-999", "#001", "#1234567"])
def test_valid_numbers(value) -> None:
    assert is_valid_invoice_number(value)


@pytest.mark.parametrize(
    "value",
    [
        "",
        "#01",
        "#abc",
        "001",
        "inv-20240102-001",
        "INV-2024012-001",
        "INV-20240102-1000",
        "INV-20240102-01",
        " #001",
        "#001\n",
        "#١٢٣",
        None,
        42,
    ],
)
def test_invalid_numbers_are_rejected(value) -> None:
    assert not is_valid_invoice_number(value)
    with pytest.raises(InvalidInvoiceNumberError) as exc:
        validate_invoice_number(value)
    assert str(exc.value) == "Invalid invoice number format"
    assert exc.value.status_code == 400


def test_suffix() -> None:
    assert invoice_number_suffix("INV-20240102-007") == "007"
    assert invoice_number_suffix("#1000") == "1000"
    with pytest.raises(InvalidInvoiceNumberError):
        invoice_number_suffix("INV-1")


# ---------- NumberingService ---------- #

def test_service_issues_and_persists(settings) -> None:
    svc = NumberingService(settings, policy="MONOTONIC")

    assert [svc.issue("u1") for _ in range(3)] == ["#001", "#002", "#003"]

    restarted = NumberingService(settings, policy="MONOTONIC")
    assert restarted.issue("u1") == "#004"
    assert restarted.get_sequence("u1").counter == 4


def test_sequences_are_per_owner(numbering) -> None:
    assert numbering.issue("u1") == "#001"
    assert numbering.issue("u2") == "#001"
    assert numbering.issue("u1") == "#002"


def test_peek_does_not_consume(numbering) -> None:
    assert numbering.peek("u1") == "#001"
    assert numbering.peek("u1") == "#001"
    assert numbering.get_sequence("u1") is None
    assert numbering.issue("u1") == "#001"


def test_daily_service_uses_the_clock(settings) -> None:
    days = iter([FIXED_DAY, FIXED_DAY, FIXED_DAY + timedelta(days=1)])
    svc = NumberingService(settings, policy="DAILY_RESET", clock=lambda: next(days))

    assert svc.issue("u1") == "INV-20240315-001"
    assert svc.issue("u1") == "INV-20240315-002"
    assert svc.issue("u1") == "INV-20240316-001"


def test_policy_comes_from_settings(data_dir) -> None:
    (data_dir / "settings.json").write_text('{"numbering": {"policy": "DAILY_RESET"}}', encoding="utf-8")
    svc = NumberingService(load_settings(data_dir), clock=lambda: FIXED_DAY)

    assert svc.policy == "DAILY_RESET"
    assert svc.issue("u1") == "INV-20240315-001"


def test_reset_and_seed(numbering) -> None:
    numbering.issue("u1")
    assert numbering.reset("u1") is True
    assert numbering.reset("u1") is False
    assert numbering.get_sequence("u1") is None

    numbering.seed("u1", 41)
    assert numbering.issue("u1") == "#042"

    # seeding an existing sequence is a no-op
    assert numbering.seed("u1", 5).counter == 42


def test_corrupt_stored_counter_is_fatal(numbering) -> None:
    numbering.repo.add({"owner_id": "u1", "counter": -3, "version": 1})

    with pytest.raises(SequenceStateError):
        numbering.issue("u1")
