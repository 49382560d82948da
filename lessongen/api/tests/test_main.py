"""Tests for FastAPI application initialization."""

from fastapi.testclient import TestClient

from lessongen.api.main import app, create_application


class TestAppInitialization:
    """Test FastAPI application initialization."""

    def test_app_exists(self):
        """Test that app instance exists."""
        assert app is not None
        assert hasattr(app, "routes")

    def test_app_has_cors_middleware(self):
        """Test that CORS middleware is configured."""
        names = [m.cls.__name__ for m in app.user_middleware]
        assert "CORSMiddleware" in names

    def test_health_check_endpoint(self):
        """Test the health check endpoint."""
        client = TestClient(app)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "service": "lesson-generation-api",
        }

    def test_root_endpoint(self):
        """Test root endpoint."""
        client = TestClient(app)

        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/health"

    def test_openapi_schema_exists(self):
        """Test that OpenAPI schema is generated."""
        client = TestClient(app)

        response = client.get("/openapi.json")

        assert response.status_code == 200
        data = response.json()
        assert "openapi" in data
        assert "paths" in data

    def test_app_has_routes(self):
        """Test the lesson and configuration routes are mounted."""
        routes = [route.path for route in create_application().routes]

        assert "/api/v1/lessons" in routes
        assert "/api/v1/lessons/{lesson_id}/generation/start" in routes
        assert "/api/v1/config/model" in routes
