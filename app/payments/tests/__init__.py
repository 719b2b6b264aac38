"""
Tests for the payments app.

- test_adapters.py: The ten gateway adapters
- test_config.py, test_http.py, test_tokens.py, test_signatures.py, test_types.py: Gateway plumbing
- test_registry.py: GatewayRegistry
- test_models.py, test_state_transitions.py: Transaction and its status machine
- test_views.py, test_serializers.py: /api/v1/payments/ endpoints

Service and webhook tests live in services/tests/ and webhooks/tests/.

Usage:
    pytest app/payments/tests/
    pytest -m unit
"""
