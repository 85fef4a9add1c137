import re
import threading
from datetime import datetime

import pytest

from warehouse_core.app import models
from warehouse_core.app.services.document_service import ReceiptService, DeliveryService
from warehouse_core.app.services.inventory_service import (
    PersistenceConflictError,
    format_sequence_number, get_next_sequence, highest_sequence_number,
    parse_sequence_suffix,
)

YEAR = datetime.utcnow().year


class TestNumberParsing:

    def test_format_pads_to_four_digits(self):
        assert format_sequence_number("REC", 2024, 7) == "REC/2024/0007"

    def test_format_grows_past_padding(self):
        assert format_sequence_number("DO", 2024, 12345) == "DO/2024/12345"

    def test_parse_suffix(self):
        assert parse_sequence_suffix("REC/2024/0042", "REC", 2024) == 42

    def test_parse_ignores_other_year_and_prefix(self):
        assert parse_sequence_suffix("REC/2023/0042", "REC", 2024) is None
        assert parse_sequence_suffix("DO/2024/0042", "REC", 2024) is None

    def test_parse_skips_non_numeric_suffix(self):
        assert parse_sequence_suffix("REC/2024/ABCD", "REC", 2024) is None
        assert parse_sequence_suffix("REC/2024/", "REC", 2024) is None

    def test_highest_of_mixed_numbers(self):
        numbers = ["DO/2024/0003", "DO/2024/oops", "DO/2023/0099", "DO/2024/0011"]
        assert highest_sequence_number(numbers, "DO", 2024) == 11

    def test_highest_defaults_to_zero(self):
        assert highest_sequence_number([], "DO", 2024) == 0


class TestSequenceGenerator:

    def test_sequential_numbers(self, db):
        first = get_next_sequence(db, "receipt", "REC", models.Receipt.receipt_number)
        second = get_next_sequence(db, "receipt", "REC", models.Receipt.receipt_number)
        assert first == f"REC/{YEAR}/0001"
        assert second == f"REC/{YEAR}/0002"

    def test_sequences_are_independent(self, db):
        get_next_sequence(db, "receipt", "REC", models.Receipt.receipt_number)
        assert get_next_sequence(db, "delivery", "DO", models.DeliveryOrder.delivery_number) == f"DO/{YEAR}/0001"

    def test_seeds_from_stored_numbers_skipping_malformed(self, db):
        db.add_all([
            models.Receipt(receipt_number=f"REC/{YEAR}/0007"),
            models.Receipt(receipt_number=f"REC/{YEAR}/ABCD"),
            models.Receipt(receipt_number=f"REC/{YEAR - 1}/0900"),
        ])
        db.commit()

        receipt = ReceiptService.create_receipt(db, {})
        assert receipt.receipt_number == f"REC/{YEAR}/0008"

    def test_year_change_resets_counter(self, db):
        db.add(models.NumberSequence(
            sequence_name="delivery", prefix="DO", current_number=57, year=YEAR - 1
        ))
        db.commit()

        assert get_next_sequence(db, "delivery", "DO", models.DeliveryOrder.delivery_number) == f"DO/{YEAR}/0001"

    def test_document_numbers_match_format(self, db):
        receipt = ReceiptService.create_receipt(db, {})
        delivery = DeliveryService.create_delivery(db, {})
        assert re.fullmatch(r"REC/\d{4}/\d{4}", receipt.receipt_number)
        assert re.fullmatch(r"DO/\d{4}/\d{4}", delivery.delivery_number)


class TestCollisionRecovery:

    def test_stale_sequence_is_resynchronised(self, db):
        first = ReceiptService.create_receipt(db, {})
        assert first.receipt_number == f"REC/{YEAR}/0001"

        # Counter falls behind the stored numbers
        seq = db.query(models.NumberSequence).filter_by(sequence_name="receipt").one()
        seq.current_number = 0
        db.commit()

        second = ReceiptService.create_receipt(db, {})
        assert second.receipt_number == f"REC/{YEAR}/0002"
        assert db.query(models.Receipt).count() == 2

    def test_gives_up_after_repeated_collisions(self, db, monkeypatch):
        ReceiptService.create_receipt(db, {})
        taken = f"REC/{YEAR}/0001"

        import warehouse_core.app.services.document_service as document_service
        monkeypatch.setattr(document_service, "get_next_sequence", lambda *args, **kwargs: taken)

        with pytest.raises(PersistenceConflictError):
            ReceiptService.create_receipt(db, {})
        assert db.query(models.Receipt).count() == 1


class TestConcurrentCreation:

    def test_two_creators_get_consecutive_numbers(self, file_sessions):
        barrier = threading.Barrier(2)
        numbers, errors = [], []

        def create():
            session = file_sessions()
            try:
                barrier.wait()
                numbers.append(ReceiptService.create_receipt(session, {}).receipt_number)
            except Exception as exc:
                errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=create) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        assert sorted(numbers) == [f"REC/{YEAR}/0001", f"REC/{YEAR}/0002"]

        check = file_sessions()
        assert check.query(models.Receipt).count() == 2
        check.close()
