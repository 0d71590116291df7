"""Tests for SequenceService."""

from ops_kernel.services.sequence_service import SequenceService


class TestSequenceService:
    def test_first_value_is_one(self, session):
        assert SequenceService(session).next_value("demo") == 1

    def test_monotonic(self, session):
        sequence = SequenceService(session)
        values = [sequence.next_value("demo") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_names_are_independent(self, session):
        sequence = SequenceService(session)
        sequence.next_value("a")
        sequence.next_value("a")
        assert sequence.next_value("b") == 1

    def test_year_scoped(self, session):
        sequence = SequenceService(session)
        assert sequence.next_for_year(SequenceService.INVOICE, 2026) == 1
        assert sequence.next_for_year(SequenceService.INVOICE, 2026) == 2
        assert sequence.next_for_year(SequenceService.INVOICE, 2027) == 1
        assert sequence.current_value("invoice:2026") == 2

    def test_current_value_unused(self, session):
        assert SequenceService(session).current_value("never") is None

    def test_rollback_returns_numbers(self, session):
        sequence = SequenceService(session)
        sequence.next_value("demo")
        session.commit()
        sequence.next_value("demo")
        session.rollback()
        assert sequence.next_value("demo") == 2

    def test_committed_values_survive_new_session(self, session, session_factory):
        SequenceService(session).next_value("demo")
        session.commit()

        with session_factory() as other:
            assert SequenceService(other).next_value("demo") == 2
            other.commit()
