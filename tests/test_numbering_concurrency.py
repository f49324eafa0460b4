from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from invoicing.services.numbering import NumberingService, is_valid_invoice_number

N = 60


@pytest.mark.parametrize("policy", ["MONOTONIC", "DAILY_RESET"])
def test_concurrent_issue_never_repeats(settings, policy) -> None:
    svc = NumberingService(settings, policy=policy, clock=lambda: date(2024, 3, 15))

    with ThreadPoolExecutor(max_workers=16) as pool:
        numbers = list(pool.map(lambda _: svc.issue("owner-1"), range(N)))

    assert len(numbers) == N
    assert len(set(numbers)) == N
    assert all(is_valid_invoice_number(n) for n in numbers)
    assert svc.get_sequence("owner-1").counter == N


def test_separate_service_instances_share_the_sequence(settings) -> None:
    services = [NumberingService(settings, policy="MONOTONIC") for _ in range(4)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        numbers = list(pool.map(lambda i: services[i % 4].issue("owner-1"), range(N)))

    assert sorted(numbers) == [f"#{i:03d}" for i in range(1, N + 1)]


def test_concurrent_invoice_creation_gets_distinct_numbers(invoices) -> None:
    payload = {"items": [{"name": "Consulting", "quantity": 1, "price": 100}]}

    with ThreadPoolExecutor(max_workers=8) as pool:
        created = list(pool.map(lambda _: invoices.create_invoice("owner-1", payload), range(20)))

    numbers = [inv.invoice_number for inv in created]
    assert len(set(numbers)) == 20
    assert len(invoices.list_invoices("owner-1")) == 20
