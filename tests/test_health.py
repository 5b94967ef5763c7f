"""
Tests for the database health check.
"""
import pytest

from settlement.monitoring.health import HealthCheck, HealthCheckError


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_healthy_database(self, session_factory: any) -> None:
        status = await HealthCheck(session_factory).check_database()
        assert status["status"] == "healthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreachable_database(self, mocker: any) -> None:
        session = mocker.AsyncMock()
        session.execute.side_effect = ConnectionError("refused")
        factory = mocker.MagicMock()
        factory.return_value.__aenter__.return_value = session

        with pytest.raises(HealthCheckError, match="refused"):
            await HealthCheck(factory).check_database()
