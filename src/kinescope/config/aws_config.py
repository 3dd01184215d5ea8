"""AWS-specific configuration and Kinesis client setup."""

import aioboto3
from botocore.config import Config
import logging

from .settings import AWSConfig

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Builds the aioboto3 session and Kinesis client from AWS settings."""

    def __init__(self, aws_config: AWSConfig):
        self.config = aws_config

        # Retries stay off unless explicitly configured; callers decide retry policy
        self._boto_config = Config(
            region_name=aws_config.region,
            retries={
                'total_max_attempts': aws_config.total_max_attempts,
                'mode': 'standard'
            },
            connect_timeout=aws_config.connect_timeout,
            read_timeout=aws_config.read_timeout
        )

        self._session = self._create_session()

    def _create_session(self) -> aioboto3.Session:
        if self.config.access_key_id and self.config.secret_access_key:
            if self.config.session_token:
                logger.warning("Using session credentials")
            else:
                logger.warning("Using basic credentials")

            return aioboto3.Session(
                aws_access_key_id=self.config.access_key_id,
                aws_secret_access_key=self.config.secret_access_key,
                aws_session_token=self.config.session_token,
                region_name=self.config.region
            )

        logger.info("Using default AWS credential provider chain")
        return aioboto3.Session(region_name=self.config.region)

    def kinesis_client(self):
        """
        Create a Kinesis client.

        Returns an async context manager; the client is open inside it and
        closed on exit.
        """
        if self.config.endpoint_url:
            logger.warning(f"Using endpoint override of {self.config.endpoint_url}")
        else:
            logger.warning("Using AWS endpoint configuration")

        return self._session.client(
            'kinesis',
            endpoint_url=self.config.endpoint_url,
            config=self._boto_config
        )
