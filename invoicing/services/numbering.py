"""Invoice numbering.

Two policies:

- ``DAILY_RESET``: ``INV-YYYYMMDD-NNN``, counter back to 1 on a new day.
- ``MONOTONIC``: ``#NNN``, counter never resets.

``next_invoice_number`` is pure. ``NumberingService`` persists one sequence
per owner and issues numbers with a compare-and-swap on the stored version,
so concurrent callers never receive the same number.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from pydantic import ValidationError

from invoicing.errors import (
    InvalidInvoiceNumberError,
    SequenceExhaustedError,
    SequenceStateError,
)
from invoicing.models.numbering import NUMBERING_POLICIES, InvoiceNumberSequence, NumberingPolicy
from invoicing.settings import Settings, load_settings
from invoicing.storage.json_repo import ConflictError, JsonRepository

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PATTERN = r"^(INV-\d{8}-\d{3}|#\d{3,})$"
# fullmatch + ASCII: no trailing newline, no non-latin digits
_INVOICE_NUMBER_RE = re.compile(INVOICE_NUMBER_PATTERN.strip("^$"), re.ASCII)
_SUFFIX_RE = re.compile(r"(\d+)$", re.ASCII)

DAILY_MAX = 999
CAS_RETRIES = 100


# ---------- format gate ---------- #

def is_valid_invoice_number(value: Any) -> bool:
    return isinstance(value, str) and _INVOICE_NUMBER_RE.fullmatch(value) is not None


def validate_invoice_number(value: Any) -> str:
    if not is_valid_invoice_number(value):
        raise InvalidInvoiceNumberError()
    return value


def invoice_number_suffix(value: str) -> str:
    """Trailing counter digits: ``INV-20240102-007`` -> ``007``, ``#1000`` -> ``1000``."""
    validate_invoice_number(value)
    return _SUFFIX_RE.search(value).group(1)


# ---------- generator ---------- #

def format_invoice_number(policy: NumberingPolicy, counter: int, day: date) -> str:
    if policy == "DAILY_RESET":
        return f"INV-{day:%Y%m%d}-{counter:03d}"
    return f"#{counter:03d}"


def next_invoice_number(
    sequence: InvoiceNumberSequence,
    policy: NumberingPolicy = "MONOTONIC",
    today: Optional[date] = None,
) -> Tuple[str, InvoiceNumberSequence]:
    if policy not in NUMBERING_POLICIES:
        raise SequenceStateError(f"Unknown numbering policy: {policy!r}")
    if not isinstance(sequence.counter, int) or sequence.counter < 0:
        raise SequenceStateError(f"Invalid sequence counter: {sequence.counter!r}")

    today = today or date.today()
    if policy == "DAILY_RESET" and sequence.last_issued_date != today:
        counter = 1
    else:
        counter = sequence.counter + 1

    if policy == "DAILY_RESET" and counter > DAILY_MAX:
        raise SequenceExhaustedError(
            f"Daily invoice numbers exhausted for {today:%Y-%m-%d} ({DAILY_MAX} issued)"
        )

    updated = sequence.model_copy(update={"counter": counter, "last_issued_date": today})
    return format_invoice_number(policy, counter, today), updated


# ---------- persisted sequences ---------- #

class NumberingService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        policy: Optional[NumberingPolicy] = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings or load_settings()
        self.policy: NumberingPolicy = policy or self.settings.numbering_policy
        self.clock = clock
        self.repo = JsonRepository(
            Path(self.settings.data_dir) / "sequences.json",
            entity_name="sequence",
            key="owner_id",
            backup_enabled=False,
        )

    def get_sequence(self, owner_id: str) -> Optional[InvoiceNumberSequence]:
        row = self.repo.get_by_id(owner_id)
        if row is None:
            return None
        try:
            return InvoiceNumberSequence.model_validate(row)
        except ValidationError as e:
            raise SequenceStateError(f"Corrupt numbering sequence for owner {owner_id}") from e

    def _current(self, owner_id: str) -> Tuple[InvoiceNumberSequence, Optional[int]]:
        seq = self.get_sequence(owner_id)
        if seq is None:
            return InvoiceNumberSequence(owner_id=owner_id), None
        return seq, seq.version

    def peek(self, owner_id: str, today: Optional[date] = None) -> str:
        seq, _ = self._current(owner_id)
        number, _ = next_invoice_number(seq, self.policy, today or self.clock())
        return number

    def issue(self, owner_id: str, today: Optional[date] = None) -> str:
        for _ in range(CAS_RETRIES):
            seq, version = self._current(owner_id)
            number, updated = next_invoice_number(seq, self.policy, today or self.clock())
            try:
                self.repo.compare_and_swap(updated, expected_version=version)
            except ConflictError:
                logger.debug("Sequence of %s moved while issuing, retrying", owner_id)
                continue
            logger.info("Issued invoice number %s for owner %s", number, owner_id)
            return number
        raise SequenceStateError(f"Could not issue an invoice number for owner {owner_id}")

    def seed(self, owner_id: str, counter: int) -> InvoiceNumberSequence:
        """Create the owner's sequence starting at ``counter`` unless one exists."""
        if counter < 0:
            raise SequenceStateError(f"Invalid sequence counter: {counter!r}")
        try:
            row = self.repo.compare_and_swap(
                InvoiceNumberSequence(owner_id=owner_id, counter=counter), expected_version=None
            )
        except ConflictError:
            return self.get_sequence(owner_id)
        logger.info("Seeded numbering sequence for owner %s at %d", owner_id, counter)
        return InvoiceNumberSequence.model_validate(row)

    def reset(self, owner_id: str) -> bool:
        removed = self.repo.delete(owner_id)
        if removed:
            logger.info("Numbering sequence reset for owner %s", owner_id)
        return removed
