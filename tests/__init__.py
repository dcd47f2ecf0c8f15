"""
Testing package for the Outreach Sequence API.

This package contains:
- Unit tests for the sequence engine components
- Integration tests for API endpoints and webhooks
- Test utilities and fixtures (see conftest.py)
"""
