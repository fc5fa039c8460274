import pytest

from stackdeploy.deploy.exceptions import PackagingError
from stackdeploy.deploy.models import NestedStackReference, ParameterSet, Template
from stackdeploy.deploy.nested import NestedStackResolver
from stackdeploy.deploy.packager import TemplatePackager
from stackdeploy.testing.config import TEST_ARTIFACT_BUCKET

ADDONS_TEMPLATE = Template("Resources:\n  Table:\n    Type: AWS::DynamoDB::Table\n")


@pytest.fixture
def resolver(packager):
    return NestedStackResolver(packager)


def test_child_template_url_and_parameters_are_forwarded(resolver, provider, stack):
    nested = NestedStackReference(ADDONS_TEMPLATE, ParameterSet({"TableName": "orders"}))

    parameters = resolver.resolve(stack, ParameterSet({"ImageTag": "v1"}), nested)

    key = f"templates/{stack.name}/{ADDONS_TEMPLATE.fingerprint}.yml"
    assert provider.objects[(TEST_ARTIFACT_BUCKET, key)] == ADDONS_TEMPLATE.body
    assert list(parameters) == ["ImageTag", "AddonsTemplateURL", "TableName"]
    assert parameters["AddonsTemplateURL"].endswith(key)
    assert parameters["TableName"] == "orders"


def test_custom_url_parameter(resolver, stack):
    nested = NestedStackReference(ADDONS_TEMPLATE, url_parameter="StorageTemplateURL")

    parameters = resolver.resolve(stack, ParameterSet(), nested)

    assert "StorageTemplateURL" in parameters
    assert "AddonsTemplateURL" not in parameters


def test_small_child_template_is_uploaded(resolver, provider, stack):
    resolver.resolve(stack, ParameterSet(), NestedStackReference(Template("Resources: {}")))

    assert len(provider.objects) == 1


def test_same_value_in_parent_is_accepted(resolver, stack):
    nested = NestedStackReference(ADDONS_TEMPLATE, ParameterSet({"Env": "test"}))

    parameters = resolver.resolve(stack, ParameterSet({"Env": "test"}), nested)

    assert parameters["Env"] == "test"


def test_conflicting_parent_parameter(resolver, stack):
    nested = NestedStackReference(ADDONS_TEMPLATE, ParameterSet({"Env": "test"}))

    with pytest.raises(PackagingError, match="parameter Env of the addons stack conflicts"):
        resolver.resolve(stack, ParameterSet({"Env": "prod"}), nested)


def test_no_bucket(provider, stack):
    resolver = NestedStackResolver(TemplatePackager(provider, bucket=""))

    with pytest.raises(PackagingError, match="no artifact bucket is configured"):
        resolver.resolve(stack, ParameterSet(), NestedStackReference(ADDONS_TEMPLATE))
