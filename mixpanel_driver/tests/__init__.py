"""
Test suite for Mixpanel driver.

Test modules:
- test_client.py: Driver initialization, dispatch, auth and error mapping
- test_exceptions.py: Exception hierarchy
- test_payloads.py: Timestamps, insert ids and payload builders
- test_batching_retry.py: Batch planning and retry policy
- test_responses.py: Response normalization
- test_operations.py: Resource/operation registry and handlers
- test_integration.py: Multi-step workflows and the job runner

Run tests:
    pytest mixpanel_driver/tests/
"""
