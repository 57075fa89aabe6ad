# Stock Ledger Live-Server Test Suite
#
# This package contains:
# - API tests against a running backend (pytest + httpx)
# - Stress/load tests (Locust)
#
# The in-process unit suite lives in backend/tests.
# Run with: python -m tests.run [unit|live|stress]
