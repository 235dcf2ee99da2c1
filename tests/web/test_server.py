"""Tests for the development web server: static files, SPA fallback and extra routes."""

from pathlib import Path

import pytest
from starlette.testclient import TestClient

from devserve.config import ConfigurationError, effective_settings
from devserve.web import StaticSite, create_app, create_dev_app
from devserve.web.livereload import LIVERELOAD_SNIPPET, LiveReloadHub
from devserve.web.server import proxy_target, tls_files


@pytest.fixture
def site_dirs(tmp_path: Path):
    serve = tmp_path / "serve"
    app = tmp_path / "app"
    components = tmp_path / "bower_components"
    for directory in (serve, app, components / "angular"):
        directory.mkdir(parents=True)
    (serve / "index.html").write_text("<html><body><h1>Dashboard</h1></body></html>")
    (serve / "app.js").write_text("console.log('serve');")
    (app / "app.js").write_text("console.log('app');")
    (app / "assets").mkdir()
    (app / "assets" / "logo.svg").write_text("<svg/>")
    (components / "angular" / "angular.js").write_text("// angular")
    (tmp_path / "secret.txt").write_text("top secret")
    return serve, app, components


@pytest.fixture
def client(site_dirs):
    serve, app, components = site_dirs
    application = create_app([serve, app], extra_routes={"/bower_components": components})
    with TestClient(application) as test_client:
        yield test_client


class TestStaticServing:
    """Test file lookup across base directories."""

    def test_first_base_dir_wins(self, client: TestClient) -> None:
        """Test that a file in the serve dir shadows the app dir copy."""
        response = client.get("/app.js")

        assert response.status_code == 200
        assert "serve" in response.text

    def test_falls_through_to_later_base_dirs(self, client: TestClient) -> None:
        """Test that assets only present in the app dir are served."""
        response = client.get("/assets/logo.svg")

        assert response.status_code == 200
        assert response.text == "<svg/>"

    def test_index_gets_livereload_snippet(self, client: TestClient) -> None:
        """Test that HTML pages load the live-reload client."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.text.endswith(f"<h1>Dashboard</h1>{LIVERELOAD_SNIPPET}</body></html>")

    def test_spa_fallback_for_html_requests(self, client: TestClient) -> None:
        """Test that client-side routes resolve to the index page."""
        response = client.get("/workload/namespace/default", headers={"accept": "text/html"})

        assert response.status_code == 200
        assert "Dashboard" in response.text

    def test_missing_asset_is_404(self, client: TestClient) -> None:
        """Test that non-HTML requests for unknown files are not rewritten."""
        response = client.get("/missing.js", headers={"accept": "application/javascript"})

        assert response.status_code == 404

    def test_extra_route(self, client: TestClient) -> None:
        """Test that the components route maps to its own directory."""
        response = client.get("/bower_components/angular/angular.js")

        assert response.status_code == 200
        assert response.text == "// angular"

    def test_extra_route_has_no_spa_fallback(self, client: TestClient) -> None:
        """Test that a missing component is a plain 404."""
        response = client.get("/bower_components/nope.js", headers={"accept": "text/html"})

        assert response.status_code == 404

    def test_non_utf8_page_served_unchanged(self, site_dirs) -> None:
        """Test that a page in another encoding is served byte for byte, without the snippet."""
        serve = site_dirs[0]
        page = "<html><body>Gr\u00fc\u00dfe</body></html>".encode("latin-1")
        (serve / "legacy.html").write_bytes(page)

        with TestClient(create_app([serve])) as test_client:
            response = test_client.get("/legacy.html")

        assert response.status_code == 200
        assert response.content == page

    def test_livereload_client_script(self, client: TestClient) -> None:
        """Test that the live-reload client script is served."""
        response = client.get("/__livereload.js")

        assert response.status_code == 200
        assert "javascript" in response.headers["content-type"]
        assert "/__livereload" in response.text


class TestStaticSite:
    """Test StaticSite lookups directly."""

    def test_directory_traversal_blocked(self, site_dirs) -> None:
        """Test that paths escaping the base directory are refused."""
        site = StaticSite(site_dirs[:2])

        assert site.find("/../secret.txt") is None

    def test_directory_serves_index(self, site_dirs) -> None:
        """Test that a directory request maps to its index.html."""
        serve = site_dirs[0]
        site = StaticSite([serve])

        assert site.find("/") == (serve / "index.html").resolve()

    def test_directory_without_index(self, site_dirs) -> None:
        """Test that directory listings are disabled."""
        site = StaticSite([site_dirs[1]])

        assert site.find("/assets") is None


class TestDevAppSettings:
    """Test settings-driven parts of the dev server."""

    def test_proxy_target_http(self) -> None:
        """Test the plain HTTP proxy target."""
        effective_settings.override(SERVE_HTTPS=False, DEV_SERVER_PORT=9091)

        assert proxy_target() == "http://localhost:9091"

    def test_proxy_target_https(self) -> None:
        """Test that HTTPS serving proxies to the backend's secure port."""
        effective_settings.override(SERVE_HTTPS=True, SECURE_DEV_SERVER_PORT=8443)

        assert proxy_target() == "https://localhost:8443"

    def test_tls_files_not_needed_for_http(self) -> None:
        """Test that plain HTTP needs no certificate."""
        effective_settings.override(SERVE_HTTPS=False)

        assert tls_files() == (None, None)

    def test_tls_files_fall_back_to_backend(self, tmp_path: Path) -> None:
        """Test that the backend certificate is reused when none is set for the frontend."""
        cert, key = tmp_path / "c.pem", tmp_path / "k.pem"
        cert.write_text("c")
        key.write_text("k")
        effective_settings.override(
            SERVE_HTTPS=True, FRONTEND_TLS_CERT="", FRONTEND_TLS_KEY="",
            BACKEND_TLS_CERT=str(cert), BACKEND_TLS_KEY=str(key),
        )

        assert tls_files() == (str(cert), str(key))

    def test_tls_files_missing(self) -> None:
        """Test that HTTPS without certificate files is a configuration error."""
        effective_settings.override(
            SERVE_HTTPS=True, FRONTEND_TLS_CERT="", FRONTEND_TLS_KEY="",
            BACKEND_TLS_CERT="", BACKEND_TLS_KEY="",
        )

        with pytest.raises(ConfigurationError):
            tls_files()

    def test_dev_app_serves_serve_dir(self, project_dir: Path) -> None:
        """Test that the dev app serves the serve dir and the components route."""
        serve = project_dir / ".tmp" / "serve"
        serve.mkdir(parents=True)
        (serve / "index.html").write_text("<body>dev</body>")
        components = project_dir / "bower_components"
        components.mkdir()
        (components / "lib.js").write_text("lib")

        with TestClient(create_dev_app(LiveReloadHub())) as test_client:
            assert "dev" in test_client.get("/").text
            assert test_client.get("/bower_components/lib.js").text == "lib"
