"""
Document number allocation tests.
"""

from datetime import date

import pytest

from duka.models import DocumentSequence
from duka.services.document_service import (
    DocumentSequenceError,
    SCOPE_INVOICE,
    SCOPE_RECEIPT,
    allocate_sequence_number,
    next_daily_number,
)


class TestAllocateSequenceNumber:
    def test_sequential_within_scope_and_key(self, db_session):
        numbers = [allocate_sequence_number(scope=SCOPE_INVOICE, sequence_key="20261017") for _ in range(3)]
        db_session.commit()
        assert numbers == [1, 2, 3]

    def test_scopes_and_keys_are_independent(self, db_session):
        assert allocate_sequence_number(scope=SCOPE_INVOICE, sequence_key="20261017") == 1
        assert allocate_sequence_number(scope=SCOPE_RECEIPT, sequence_key="20261017") == 1
        assert allocate_sequence_number(scope=SCOPE_INVOICE, sequence_key="20261018") == 1
        db_session.commit()
        assert db_session.query(DocumentSequence).count() == 3

    def test_rolled_back_number_is_reused(self, db_session):
        allocate_sequence_number(scope=SCOPE_INVOICE, sequence_key="20261017")
        db_session.commit()
        allocate_sequence_number(scope=SCOPE_INVOICE, sequence_key="20261017")
        db_session.rollback()
        assert allocate_sequence_number(scope=SCOPE_INVOICE, sequence_key="20261017") == 2

    @pytest.mark.parametrize("scope,key", [("", "20261017"), (SCOPE_INVOICE, "")])
    def test_scope_and_key_required(self, db_session, scope, key):
        with pytest.raises(DocumentSequenceError):
            allocate_sequence_number(scope=scope, sequence_key=key)


class TestNextDailyNumber:
    def test_format_and_padding(self, db_session):
        day = date(2026, 10, 17)
        assert next_daily_number(scope=SCOPE_INVOICE, prefix="INV", on=day) == "INV-20261017-0001"
        assert next_daily_number(scope=SCOPE_RECEIPT, prefix="RCP", on=day, pad=6) == "RCP-20261017-000001"
        assert next_daily_number(scope=SCOPE_INVOICE, prefix="INV", on=day) == "INV-20261017-0002"
