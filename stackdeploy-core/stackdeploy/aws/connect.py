"""
stackdeploy client stack.

This module provides the factory for the boto3 clients used to talk to the deployment provider. There is no
module-level client or session: callers create a ``ClientFactory`` (usually once per process or per credential
context) and hand it to the components that need it.
"""

import logging
import threading
from functools import lru_cache
from typing import Optional

from boto3.session import Session
from botocore.client import BaseClient
from botocore.config import Config

from stackdeploy import config as stackdeploy_config
from stackdeploy.constants import AWS_REGION_US_EAST_1, VERSION

LOG = logging.getLogger(__name__)

MAX_POOL_CONNECTIONS = 50


def attribute_name_to_service_name(attribute_name):
    """
    Converts a python-compatible attribute name to the boto service name
    :param attribute_name: Python compatible attribute name using the following replacements:
                            a) Add an underscore suffix `_` to any reserved Python keyword (PEP-8).
                            b) Replace any dash `-` with an underscore `_`
    :return:
    """
    if attribute_name.endswith("_"):
        attribute_name = attribute_name[:-1]
    return attribute_name.replace("_", "-")


class ServiceLevelClientFactory:
    """
    A service level client factory, preseeded with parameters for the boto3 client creation.
    Will create any service client with parameters already provided by the ClientFactory, e.g.
    ``factory(region_name="eu-west-1").cloudformation``.
    """

    def __init__(self, *, factory: "ClientFactory", client_creation_params: dict):
        self._factory = factory
        self._client_creation_params = client_creation_params

    @property
    def region_name(self) -> str:
        return self._client_creation_params.get("region_name") or self._factory.region_name

    def get_client(self, service: str):
        return self._factory.get_client(service_name=service, **self._client_creation_params)

    def __getattr__(self, service: str):
        if service.startswith("__"):
            raise AttributeError(service)
        return self.get_client(attribute_name_to_service_name(service))


class ClientFactory:
    """
    Factory to build the AWS clients.

    Boto client creation is resource intensive. This class caches all Boto clients it creates. The clients are
    created with botocore's own retry handling disabled, since provider calls are retried with backoff by
    ``stackdeploy.deploy.provider``.
    """

    def __init__(
        self,
        session: Session = None,
        config: Config = None,
        endpoint_url: Optional[str] = None,
    ):
        """
        :param session: Session to be used for client creation. Will create a new session if not provided.
            Sessions are not thread safe, the factory guards client creation with a lock, so the session
            should not be shared with other factories.
        :param config: Config used as default for client creation.
        :param endpoint_url: Endpoint URL for all clients, defaults to ``config.AWS_ENDPOINT_URL``.
        """
        self._session: Session = session or Session()
        self._config: Config = config or Config(
            max_pool_connections=MAX_POOL_CONNECTIONS,
            user_agent_extra=f"stackdeploy/{VERSION}",
        )
        self._endpoint_url = endpoint_url or stackdeploy_config.AWS_ENDPOINT_URL
        self._create_client_lock = threading.RLock()

    @classmethod
    def from_profile(
        cls, profile_name: Optional[str] = None, region_name: Optional[str] = None, **kwargs
    ) -> "ClientFactory":
        """Creates a factory for a named profile of the shared AWS configuration files."""
        return cls(session=Session(profile_name=profile_name, region_name=region_name), **kwargs)

    @property
    def region_name(self) -> str:
        """Return AWS region as set in the Boto session, or the default region."""
        return self._session.region_name or AWS_REGION_US_EAST_1

    @property
    def endpoint_url(self) -> Optional[str]:
        return self._endpoint_url

    def __call__(
        self,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        config: Config = None,
    ) -> ServiceLevelClientFactory:
        """
        Get back an object which lets you select the service client you want to access with the given attributes

        :param region_name: Name of the AWS region to be associated with the client
            If set to None, loads from botocore session.
        :param endpoint_url: Full endpoint URL to be used by the client.
        :param config: Boto config for advanced use.
        :return: Service Region Client Creator
        """
        params = {
            "region_name": region_name,
            "endpoint_url": endpoint_url,
            "config": config,
        }
        return ServiceLevelClientFactory(factory=self, client_creation_params=params)

    def get_client(
        self,
        service_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        config: Optional[Config] = None,
    ) -> BaseClient:
        if config is None:
            config = self._config
        else:
            config = self._config.merge(config)

        return self._get_client(
            service_name=service_name,
            region_name=region_name or self.region_name,
            endpoint_url=endpoint_url or self._endpoint_url,
            config=config,
        )

    # TODO: replace lru_cache, it keeps `self` alive and prevents factories from being collected
    @lru_cache(maxsize=256)
    def _get_client(
        self,
        service_name: str,
        region_name: str,
        endpoint_url: Optional[str],
        config: Config,
    ) -> BaseClient:
        """
        Returns a boto3 client with the given configuration. This is a cached call, so modifications to the used
        client will affect others. Client creation is behind a lock as it is not generally thread safe.
        """
        with self._create_client_lock:
            LOG.debug("Creating %s client for region %s", service_name, region_name)
            return self._session.client(
                service_name=service_name,
                region_name=region_name,
                endpoint_url=endpoint_url,
                config=config.merge(Config(retries={"max_attempts": 0})),
            )
