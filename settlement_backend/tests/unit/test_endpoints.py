"""
HTTP tests for the settlement and reconciliation routes.

Storage and processor dependencies are overridden with the in-memory
fakes from conftest.
"""

import pytest
import pytest_asyncio
from unittest.mock import patch

from httpx import ASGITransport, AsyncClient

from settlement_backend.core.conf import settings
from settlement_backend.core.registrar import register_app
from settlement_backend.src.settlement.domain import UserWeekPenalty
from settlement_backend.src.settlement.endpoints import get_processor, get_repository
from settlement_backend.src.settlement.shared.exceptions import ConfigurationError

API = settings.FASTAPI_API_V1_PATH


@pytest.fixture
def app(repository, processor):
    app = register_app()
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_processor] = lambda: processor
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as client:
        yield client


def seed_candidate(repository, builders, penalty_cents=300):
    commitment = repository.add_commitment(builders.commitment())
    repository.add_user(builders.user())
    repository.add_penalty(UserWeekPenalty(user_id='user-1', week_key=builders.week_key,
                                           total_penalty_cents=penalty_cents))
    repository.add_usage(commitment.id, builders.after_grace.date())


class TestSettlementRun:
    """Tests for POST /settlement/run."""

    @pytest.mark.asyncio
    async def test_run_returns_summary(self, client, repository, processor, builders):
        seed_candidate(repository, builders)

        response = await client.post(f'{API}/settlement/run', json={'targetWeek': builders.week_key})

        assert response.status_code == 200
        body = response.json()
        assert body['weekEndDate'] == builders.week_key
        assert body['chargedActual'] == 1
        assert body['chargeFailures'] == []
        assert processor.charges[0].amount_cents == 300

    @pytest.mark.asyncio
    async def test_testing_mode_skips_scheduled_trigger(self, client, repository, processor, builders):
        seed_candidate(repository, builders)
        repository.app_config['testing_mode'] = 'true'

        response = await client.post(f'{API}/settlement/run', json={'targetWeek': builders.week_key})

        assert response.status_code == 200
        assert response.json()['skipped'] is True
        assert processor.charges == []

    @pytest.mark.asyncio
    async def test_testing_mode_runs_manual_trigger(self, client, repository):
        repository.app_config['testing_mode'] = 'true'

        response = await client.post(
            f'{API}/settlement/run',
            json={'targetWeek': '2025-01-13'},
            headers={'x-manual-trigger': 'true'},
        )

        assert response.status_code == 200
        assert response.json()['weekEndDate'] == '2025-01-13'

    @pytest.mark.asyncio
    async def test_invalid_target_week(self, client):
        response = await client.post(f'{API}/settlement/run', json={'targetWeek': '2025-13-45'})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_processor_key_fails_run(self, client, repository, processor, builders):
        seed_candidate(repository, builders)

        with patch.object(processor, 'ensure_configured',
                          side_effect=ConfigurationError("STRIPE_SECRET_KEY not configured",
                                                         missing=['STRIPE_SECRET_KEY'])):
            response = await client.post(f'{API}/settlement/run', json={'targetWeek': builders.week_key})

        assert response.status_code == 500
        assert response.json() == {
            'error': 'CONFIGURATION_ERROR',
            'message': 'STRIPE_SECRET_KEY not configured',
            'details': {'missing': ['STRIPE_SECRET_KEY']},
        }
        assert processor.charges == []

    @pytest.mark.asyncio
    async def test_auto_check_skipped_outside_testing_mode(self, client):
        response = await client.post(f'{API}/settlement/auto-check')

        assert response.status_code == 200
        assert response.json()['skipped'] is True


class TestReconciliationRoutes:
    """Tests for reconciliation and late-sync routes."""

    @pytest.mark.asyncio
    async def test_late_sync_then_reconcile(self, client, repository, processor, builders):
        repository.add_commitment(builders.commitment())
        repository.add_user(builders.user())
        repository.add_penalty(builders.settled_penalty(charged=500))

        response = await client.post(f'{API}/usage/late-sync', json={
            'userId': 'user-1',
            'weekKey': builders.week_key,
            'actualPenaltyCents': 300,
        })
        assert response.json() == {'settled': True, 'flagged': True, 'deltaCents': -200}

        response = await client.post(f'{API}/reconciliation/run', json={'dryRun': True})
        assert response.json()['dryRun'] is True
        assert processor.refunds == []

        response = await client.post(f'{API}/reconciliation/run', json={'limit': 500})
        body = response.json()
        assert body['requestedLimit'] == 100
        assert body['refundsIssued'] == 1
        assert processor.refunds[0]['amount_cents'] == 200

    @pytest.mark.asyncio
    async def test_late_sync_rejects_bad_week_key(self, client):
        response = await client.post(f'{API}/usage/late-sync', json={
            'userId': 'user-1',
            'weekKey': 'last-week',
            'actualPenaltyCents': 300,
        })

        assert response.status_code == 422
