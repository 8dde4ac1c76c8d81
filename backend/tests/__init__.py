"""
pytest suite for the storefront payments backend.

Test categories:
- Unit tests: signature codec, gateway adapters, ledger and reaper over in-memory SQLite
- API tests: full FastAPI app through httpx ASGITransport
- Integration tests: file-backed SQLite with several connections racing on one order
"""
