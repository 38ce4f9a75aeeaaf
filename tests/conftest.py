"""Common test fixtures and configuration for pytest.

Unit tests run without Postgres, Redis or Stripe: storage goes through an
in-memory repository and the billing gateway is a mock.
"""

# Import all fixtures so they are automatically available for all tests
from tests.fixtures.common import (  # noqa
    clock,
    make_member,
    mock_db,
    mock_gateway,
    mock_publisher,
    mock_settings_provider,
    policy,
    reconciler,
    repository,
)
