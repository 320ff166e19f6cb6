"""
pytest test suite for the BubbleBeads storefront backend.

Test categories:
- Unit tests: service layer with the PhonePe client and notifications mocked
- API tests: full FastAPI app over httpx ASGITransport with in-memory SQLite
- Edge case tests: idempotency, terminal states, expiry, token misuse
"""
