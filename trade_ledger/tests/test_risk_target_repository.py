"""
Tests for RiskTargetRepository: upsert, partial update, deactivate.
"""

import pytest
from decimal import Decimal

from trade_ledger.core.errors import RiskTargetValidationError
from trade_ledger.repositories.base import EntityNotFoundError
from trade_ledger.repositories.risk_target import RiskTargetRepository


class TestRiskTargetRepository:

    def test_set_and_read_back(self, session, portfolio_id):
        repo = RiskTargetRepository(session)
        repo.set_targets(portfolio_id, 'AAPL', Decimal('90'), Decimal('130'), Decimal('100'))

        target = repo.get_for_asset(portfolio_id, 'AAPL')
        assert target.stop_loss == Decimal('90')
        assert target.take_profit == Decimal('130')
        assert target.is_active

    def test_set_replaces_existing(self, session, portfolio_id):
        repo = RiskTargetRepository(session)
        repo.set_targets(portfolio_id, 'AAPL', stop_loss=Decimal('90'))
        repo.set_targets(portfolio_id, 'AAPL', take_profit=Decimal('150'))

        targets = repo.list(portfolio_id)
        assert len(targets) == 1
        assert targets[0].stop_loss is None
        assert targets[0].take_profit == Decimal('150')

    def test_invalid_levels_rejected(self, session, portfolio_id):
        repo = RiskTargetRepository(session)

        with pytest.raises(RiskTargetValidationError) as exc_info:
            repo.set_targets(portfolio_id, 'AAPL', Decimal('110'), Decimal('130'), Decimal('100'))

        assert "Stop loss must be below the current price" in exc_info.value.errors
        assert repo.list(portfolio_id) == []

    def test_partial_update_keeps_other_level(self, session, portfolio_id):
        repo = RiskTargetRepository(session)
        repo.set_targets(portfolio_id, 'AAPL', Decimal('90'), Decimal('130'))

        updated = repo.update_targets(portfolio_id, 'AAPL', take_profit=Decimal('140'))

        assert updated.stop_loss == Decimal('90')
        assert updated.take_profit == Decimal('140')

    def test_update_missing_target(self, session, portfolio_id):
        with pytest.raises(EntityNotFoundError):
            RiskTargetRepository(session).update_targets(portfolio_id, 'AAPL', Decimal('90'))

    def test_deactivate_and_reactivate(self, session, portfolio_id):
        repo = RiskTargetRepository(session)
        repo.set_targets(portfolio_id, 'AAPL', Decimal('90'))
        repo.set_targets(portfolio_id, 'MSFT', Decimal('300'))

        repo.deactivate(portfolio_id, 'AAPL')
        assert [t.asset_id for t in repo.list_active(portfolio_id)] == ['MSFT']
        assert len(repo.list(portfolio_id)) == 2

        repo.set_targets(portfolio_id, 'AAPL', Decimal('95'))
        assert repo.get_for_asset(portfolio_id, 'AAPL').is_active
