import pytest

from config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(
        spotify_client_id="client-id",
        spotify_client_secret="client-secret",
        spotify_redirect_uri="http://127.0.0.1:8888/api/auth/callback",
        frontend_url="http://127.0.0.1:3000",
    )
