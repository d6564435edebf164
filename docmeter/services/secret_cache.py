"""
TTL cache for the payment webhook signing secret.

The secret may live in AWS SSM Parameter Store; fetching it on every
webhook would add a network round trip, so it is cached for a bounded time
and refreshed on expiry or after a signature failure.
"""
import logging
import time
from typing import Callable, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from docmeter.config import settings
from docmeter.errors import PaymentConfigurationError

logger = logging.getLogger(__name__)


class SecretCache:
    """Holds (value, fetched_at) and refetches once the entry is older than ttl_seconds."""

    def __init__(
        self,
        fetch: Callable[[], str],
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[Tuple[str, float]] = None

    def get(self) -> str:
        now = self._clock()
        if self._entry is not None:
            value, fetched_at = self._entry
            if now - fetched_at < self.ttl_seconds:
                return value
        value = self._fetch()
        self._entry = (value, now)
        return value

    def invalidate(self):
        self._entry = None


def load_stripe_webhook_secret() -> str:
    """
    Read the Stripe webhook secret from SSM when configured, else from settings.

    Raises:
        PaymentConfigurationError: If no secret is available
    """
    if settings.stripe_webhook_secret_ssm_parameter:
        try:
            client = boto3.client("ssm", region_name=settings.artifact_region)
            response = client.get_parameter(
                Name=settings.stripe_webhook_secret_ssm_parameter,
                WithDecryption=True,
            )
            logger.info("Loaded Stripe webhook secret from SSM")
            return response["Parameter"]["Value"]
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to read Stripe webhook secret from SSM: {e}")
            raise PaymentConfigurationError(["stripe_webhook_secret_ssm_parameter"])

    if not settings.stripe_webhook_secret:
        raise PaymentConfigurationError(["stripe_webhook_secret"])
    return settings.stripe_webhook_secret
