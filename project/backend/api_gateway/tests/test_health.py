"""
Tests for the health endpoint.
"""

from unittest.mock import AsyncMock, patch


def test_health_ok(client, fake_db, fake_redis):
    with patch("api_gateway.routes.health.db", fake_db), \
         patch("api_gateway.routes.health.redis_client", fake_redis), \
         patch("api_gateway.routes.health.shutil.which", return_value="/usr/bin/ffmpeg"):
        response = client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"
    assert data["redis"] == "connected"
    assert data["ffmpeg"] == "available"
    assert data["queue"] == {"size": 0}


def test_missing_ffmpeg_is_reported_not_fatal(client, fake_db, fake_redis):
    with patch("api_gateway.routes.health.db", fake_db), \
         patch("api_gateway.routes.health.redis_client", fake_redis), \
         patch("api_gateway.routes.health.shutil.which", return_value=None):
        response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["issues"] == ["ffmpeg not found"]


def test_database_down(client, fake_db, fake_redis):
    fake_db.health_check = AsyncMock(return_value=False)

    with patch("api_gateway.routes.health.db", fake_db), \
         patch("api_gateway.routes.health.redis_client", fake_redis), \
         patch("api_gateway.routes.health.shutil.which", return_value="/usr/bin/ffmpeg"):
        response = client.get("/api/v1/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"
    assert "database connection failed" in response.json()["issues"]
