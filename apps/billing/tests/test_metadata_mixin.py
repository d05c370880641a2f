from __future__ import annotations

import pytest
from sqlalchemy import MetaData

from billing.db.base import Base
from billing.ledger.enums import LedgerEntryType
from billing.ledger.models import LedgerEntry
from billing.payments.enums import ProductKind
from billing.payments.models import PaymentAttempt


def _attempt(**kwargs: object) -> PaymentAttempt:
    return PaymentAttempt(
        user_id=1,
        product_kind=ProductKind.CREDITS,
        product_code="credits_50",
        credits=50,
        amount=2_500,
        phone_number="255712345678",
        **kwargs,
    )


def test_payment_attempt_metadata_descriptor() -> None:
    class_metadata = PaymentAttempt.metadata

    assert isinstance(class_metadata, MetaData)
    assert class_metadata is Base.metadata

    payload = {"plan_tier": "pro"}
    attempt = _attempt(metadata=payload)

    assert attempt.meta_data == payload
    assert attempt.metadata_dict == payload

    attempt.metadata_dict = {"updated": "data"}
    assert attempt.meta_data == {"updated": "data"}


def test_merge_metadata_reassigns_the_column() -> None:
    attempt = _attempt(metadata={"a": 1})
    original = attempt.meta_data

    merged = attempt.merge_metadata(b=2)

    assert merged == {"a": 1, "b": 2}
    assert attempt.meta_data is merged
    assert original == {"a": 1}


def test_metadata_must_be_a_mapping() -> None:
    with pytest.raises(TypeError):
        _attempt(metadata=["not", "a", "mapping"])


def test_ledger_entry_metadata_descriptor() -> None:
    assert LedgerEntry.metadata is Base.metadata

    entry = LedgerEntry(
        payment_attempt_id=_attempt().id,
        user_id=1,
        entry_type=LedgerEntryType.CREDIT_PURCHASE,
        credits=50,
        balance_after=50,
        metadata=None,
    )

    assert entry.meta_data == {}


def test_attempt_defaults() -> None:
    attempt = _attempt()

    assert attempt.id is not None
    assert attempt.idempotency_key == f"attempt-{attempt.id.hex}"
    assert attempt.status == "pending"
    assert attempt.is_terminal is False
