# Stock Ledger Live-Server Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test server provisioning (ephemeral SQLite file per test run)
# - A seeded warehouse with two storage locations
# - Data factories that drive the HTTP API
# - Failure message formatting

import os
import sys
import time
import tempfile
import subprocess
import shutil
from pathlib import Path
from typing import Generator, Optional, Dict, Any, List
from dataclasses import dataclass

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))

SEED_ORG_ID = 1


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    __test__ = False

    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")

    # Timeouts
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    server_startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))

    # Concurrency (for stress tests)
    stress_users: int = int(os.environ.get("TEST_STRESS_USERS", "10"))
    stress_duration: int = int(os.environ.get("TEST_STRESS_DURATION", "60"))

    # Product ids are plain integers; the seed keeps runs from colliding on a shared server
    seed: int = int(os.environ.get("TEST_SEED", str(int(time.time()))))


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """
    __test__ = False

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}

        message = self._format_message()
        super().__init__(message)

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_body_contains: Optional[str] = None
):
    """
    Assert HTTP response status and optionally body content.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_body_contains and expected_body_contains not in response.text:
        raise TestFailure(
            scenario=scenario,
            expected=f"Response body contains: {expected_body_contains}",
            actual=f"Response body: {response.text[:500]}",
            likely_cause="Response format changed or wrong endpoint hit",
            code_location=code_location,
            response=response
        )


def _infer_cause(response: httpx.Response) -> str:
    """Infer likely cause from response status/body."""
    code = ""
    try:
        code = response.json().get("code", "")
    except ValueError:
        pass

    if response.status_code == 404:
        return "Resource not found - wrong ID or deleted document"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409 and code == "insufficient_stock":
        return "Not enough available stock - check receipts and open reservations"
    elif response.status_code == 409 and code == "invalid_transition":
        return "Document is in the wrong status for this action"
    elif response.status_code == 409:
        return "Conflict - over-receipt, over-consumption or immutable record"
    elif response.status_code == 503:
        return "Contention - lock wait or retry budget exhausted, or database unhealthy"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT
# =============================================================================

class APIClient:
    """
    Thin httpx wrapper with JSON defaults and the base URL baked in.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        headers = {"Content-Type": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(
            f"{self.base_url}{path}",
            headers=self._headers(),
            params=params,
            **kwargs
        )

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=json if json is not None else {},
            **kwargs
        )

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=json if json is not None else {},
            **kwargs
        )

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.client.delete(
            f"{self.base_url}{path}",
            headers=self._headers(),
            **kwargs
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()


# =============================================================================
# SERVER MANAGEMENT
# =============================================================================

class ServerManager:
    """
    Manages Flask backend server lifecycle for tests.
    """

    def __init__(self, config: TestConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.db_file: Optional[Path] = None
        self.seed_data: Dict[str, int] = {}

    def start(self) -> bool:
        """Start the Flask server with test database."""
        temp_dir = tempfile.mkdtemp(prefix="stockledger_test_")
        self.db_file = Path(temp_dir) / "test_stockledger.sqlite3"

        env = os.environ.copy()
        env["DATABASE_URL"] = f"sqlite:///{self.db_file}"
        env["LEDGER_RETRY_BACKOFF_SECONDS"] = "0.01"

        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "--app", "wsgi", "run", "--port", "5001"],
            cwd=str(BACKEND_DIR),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        return self._wait_for_server()

    def _wait_for_server(self) -> bool:
        """Wait for server to be responsive."""
        start_time = time.time()
        while time.time() - start_time < self.config.server_startup_timeout:
            try:
                response = httpx.get(f"{self.config.backend_base_url}/api/health", timeout=2.0)
                if response.status_code in (200, 503):  # 503 means degraded but running
                    return True
            except (httpx.ConnectError, httpx.TimeoutException):
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        """Stop the Flask server and cleanup."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

        if self.db_file and self.db_file.parent.exists():
            shutil.rmtree(self.db_file.parent, ignore_errors=True)

    def initialize_db(self) -> Dict[str, int]:
        """
        Create the schema and seed one warehouse with two locations.
        Uses the service layer directly against the server's database file.
        """
        from stockledger import create_app
        from stockledger.extensions import db
        from stockledger.services import location_service

        app = create_app(SQLALCHEMY_DATABASE_URI=f"sqlite:///{self.db_file}")

        with app.app_context():
            db.create_all()

            warehouse = location_service.create_warehouse(
                org_id=SEED_ORG_ID, code="MAIN", name="Main Warehouse"
            )
            primary = location_service.create_location(warehouse_id=warehouse.id, code="A-01")
            secondary = location_service.create_location(warehouse_id=warehouse.id, code="B-01")

            self.seed_data = {
                "org_id": SEED_ORG_ID,
                "warehouse_id": warehouse.id,
                "location_id": primary.id,
                "second_location_id": secondary.id,
            }
        return self.seed_data

    def discover_seed(self, client: "APIClient") -> Dict[str, int]:
        """Look up the seeded warehouse on an externally managed server."""
        response = client.get("/api/warehouses", params={"org_id": SEED_ORG_ID})
        warehouses = [w for w in response.json().get("warehouses", []) if w["code"] == "MAIN"]
        if not warehouses:
            pytest.fail("External server has no MAIN warehouse for org 1; seed it first")
        warehouse = warehouses[0]
        locations = client.get(f"/api/warehouses/{warehouse['id']}/locations").json()["locations"]
        by_code = {loc["code"]: loc["id"] for loc in locations}
        self.seed_data = {
            "org_id": SEED_ORG_ID,
            "warehouse_id": warehouse["id"],
            "location_id": by_code["A-01"],
            "second_location_id": by_code["B-01"],
        }
        return self.seed_data


# =============================================================================
# TEST DATA FACTORIES
# =============================================================================

class TestDataFactory:
    """
    Factory for creating test data via API calls.
    """
    __test__ = False

    def __init__(self, client: APIClient, seed_data: Dict[str, int], seed: int):
        self.client = client
        self.seed_data = seed_data
        self._counter = 0
        self._product_base = 100000 + (seed % 10000) * 100

    def next_product_id(self) -> int:
        """A product id no other test in this run has touched."""
        self._counter += 1
        return self._product_base + self._counter

    def receive_stock(
        self,
        product_id: int,
        qty: int,
        location_id: Optional[int] = None,
        unit_cost_cents: Optional[int] = None
    ) -> Dict:
        """Put stock on hand with a purchase move."""
        response = self.client.post("/api/stock/moves", json={
            "product_id": product_id,
            "qty": qty,
            "reason": "purchase",
            "to_location_id": location_id or self.seed_data["location_id"],
            "unit_cost_cents": unit_cost_cents,
        })
        if response.status_code == 201:
            return response.json()["move"]
        raise TestFailure(
            scenario="Receive stock",
            expected="HTTP 201",
            actual=f"HTTP {response.status_code}",
            likely_cause="Stock move rejected - check location and qty validation",
            code_location="backend/stockledger/routes/stock.py:apply_move_route",
            response=response
        )

    def create_sales_order(self, lines: List[Dict], customer_name: str = "Live Test Customer") -> Dict:
        """Create a pending sales order; each line is {product_id, qty_ordered}."""
        response = self.client.post("/api/sales-orders", json={
            "org_id": self.seed_data["org_id"],
            "customer_name": customer_name,
            "lines": [
                {"location_id": self.seed_data["location_id"], **line}
                for line in lines
            ],
        })
        if response.status_code == 201:
            return response.json()["sales_order"]
        raise TestFailure(
            scenario="Create sales order",
            expected="HTTP 201",
            actual=f"HTTP {response.status_code}",
            likely_cause="Sales order validation failed",
            code_location="backend/stockledger/routes/sales_orders.py:create_sales_order_route",
            response=response
        )

    def create_purchase_order(self, product_id: int, qty: int, unit_cost_cents: int = 500) -> Dict:
        """Create a draft purchase order with one line at the seeded location."""
        response = self.client.post("/api/purchase-orders", json={
            "org_id": self.seed_data["org_id"],
            "supplier_name": "Live Test Supplier",
            "warehouse_id": self.seed_data["warehouse_id"],
            "lines": [{
                "product_id": product_id,
                "qty_ordered": qty,
                "unit_cost_cents": unit_cost_cents,
                "location_id": self.seed_data["location_id"],
            }],
        })
        if response.status_code == 201:
            return response.json()["purchase_order"]
        raise TestFailure(
            scenario="Create purchase order",
            expected="HTTP 201",
            actual=f"HTTP {response.status_code}",
            likely_cause="Purchase order validation failed",
            code_location="backend/stockledger/routes/purchase_orders.py:create_purchase_order_route",
            response=response
        )

    def stock_totals(self, product_id: int) -> Dict:
        """Current qty/reserved/available totals for a product."""
        response = self.client.get(f"/api/stock/{product_id}")
        assert_response(
            response, 200,
            scenario="Read stock snapshot",
            code_location="backend/stockledger/routes/stock.py:stock_snapshot_route"
        )
        return response.json()


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture(scope="session")
def server_manager(test_config: TestConfig) -> Generator[ServerManager, None, None]:
    """
    Manage test server lifecycle.
    Server is started once per test session.
    """
    manager = ServerManager(test_config)

    # For CI/external server mode, don't manage server
    if os.environ.get("TEST_EXTERNAL_SERVER"):
        yield manager
    else:
        if not manager.start():
            pytest.fail("Failed to start test server")
        yield manager
        manager.stop()


@pytest.fixture(scope="session")
def api_client(test_config: TestConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    """
    Provide API client for session-scoped tests.
    Database is initialized once.
    """
    client = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)

    if os.environ.get("TEST_EXTERNAL_SERVER"):
        server_manager.discover_seed(client)
    else:
        server_manager.initialize_db()

    yield client
    client.close()


@pytest.fixture
def client(api_client: APIClient) -> APIClient:
    """Provide API client for each test."""
    return api_client


@pytest.fixture
def seed_data(api_client: APIClient, server_manager: ServerManager) -> Dict[str, int]:
    """Ids of the seeded org, warehouse and locations."""
    return server_manager.seed_data


@pytest.fixture(scope="session")
def session_factory(test_config: TestConfig, server_manager: ServerManager, api_client: APIClient):
    return TestDataFactory(api_client, server_manager.seed_data, test_config.seed)


@pytest.fixture
def factory(session_factory: TestDataFactory) -> TestDataFactory:
    """Provide test data factory; product ids stay unique across the session."""
    return session_factory


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "full: Full regression tests")
    config.addinivalue_line("markers", "stress: Load/stress tests")
    config.addinivalue_line("markers", "ledger: Stock move and snapshot tests")
    config.addinivalue_line("markers", "purchasing: Purchase order workflow tests")
    config.addinivalue_line("markers", "sales: Sales order workflow tests")
    config.addinivalue_line("markers", "adjustments: Inventory adjustment tests")
    config.addinivalue_line("markers", "alerts: Stock alert tests")
    config.addinivalue_line("markers", "concurrent: Concurrency tests")
