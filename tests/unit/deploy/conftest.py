import pytest

from stackdeploy.deploy.engine import StackDeployer
from stackdeploy.deploy.models import StackIdentity, Template
from stackdeploy.deploy.packager import TemplatePackager
from stackdeploy.testing.config import TEST_ARTIFACT_BUCKET, TEST_AWS_REGION_NAME
from stackdeploy.testing.fakes import FakeClock, FakeStackProvider

TEMPLATE_V1 = """
Resources:
  Service:
    Type: AWS::ECS::Service
"""

TEMPLATE_V2 = """
Resources:
  Service:
    Type: AWS::ECS::Service
    Properties:
      DesiredCount: 2
"""


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeStackProvider()


@pytest.fixture
def packager(provider):
    return TemplatePackager(provider, bucket=TEST_ARTIFACT_BUCKET, prefix="templates")


@pytest.fixture
def deployer(provider, packager, clock):
    return StackDeployer(
        provider,
        packager,
        clock=clock,
        change_set_poll_interval=3,
        change_set_max_wait=60,
        stack_poll_interval=5,
        stack_max_wait=600,
        event_poll_interval=2,
        concurrent_mode="wait",
    )


@pytest.fixture
def stack():
    return StackIdentity("app-test-api", TEST_AWS_REGION_NAME, "000000000000")


@pytest.fixture
def template():
    return Template(TEMPLATE_V1)


@pytest.fixture
def updated_template():
    return Template(TEMPLATE_V2)
