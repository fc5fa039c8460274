import boto3
import pytest
from moto import mock_aws

from stackdeploy.aws.connect import ClientFactory
from stackdeploy.deploy.exceptions import PackagingError
from stackdeploy.deploy.models import Template
from stackdeploy.deploy.packager import TemplatePackager, diff_parameters
from stackdeploy.deploy.provider import CloudFormationStackProvider
from stackdeploy.testing.config import TEST_ARTIFACT_BUCKET, TEST_AWS_REGION_NAME


def large_template(size: int) -> Template:
    header = "Resources:\n  Service:\n    Type: AWS::ECS::Service\n# "
    return Template(header + "x" * (size - len(header)))


class TestTemplatePackager:
    def test_small_template_is_inline(self, packager, provider, stack):
        packaged = packager.package(large_template(10_000), stack)

        assert packaged.inline
        assert "TemplateBody" in packaged.to_provider()
        assert not provider.objects

    def test_large_template_is_uploaded(self, packager, provider, stack):
        template = large_template(60_000)

        packaged = packager.package(template, stack)

        key = f"templates/{stack.name}/{template.fingerprint}.yml"
        assert not packaged.inline
        assert packaged.url.endswith(key)
        assert packaged.to_provider() == {"TemplateURL": packaged.url}
        assert provider.objects[(TEST_ARTIFACT_BUCKET, key)] == template.body

    def test_inline_size_limit_is_inclusive(self, provider, stack):
        packager = TemplatePackager(provider, bucket=TEST_ARTIFACT_BUCKET, inline_size_limit=100)

        assert packager.package(large_template(100), stack).inline
        assert not packager.package(large_template(101), stack).inline

    def test_force_upload(self, packager, provider, stack):
        packaged = packager.package(Template("Resources: {}"), stack, force_upload=True)

        assert not packaged.inline
        assert len(provider.objects) == 1

    def test_object_key_without_prefix(self, provider, stack):
        packager = TemplatePackager(provider, bucket=TEST_ARTIFACT_BUCKET, prefix="")
        template = Template("Resources: {}")

        assert packager.object_key(template, stack) == f"{stack.name}/{template.fingerprint}.yml"

    def test_large_template_without_bucket(self, provider, stack):
        packager = TemplatePackager(provider, bucket="")

        with pytest.raises(PackagingError, match="exceeds the inline limit") as e:
            packager.package(large_template(60_000), stack)

        assert e.value.frames == [f"package template for stack {stack.name}"]
        assert not provider.calls

    def test_upload_failure(self, packager, provider, stack):
        provider.fail_uploads = True

        with pytest.raises(PackagingError, match="unable to upload template"):
            packager.package(large_template(60_000), stack)


class TestUploadToS3:
    @mock_aws
    def test_upload(self, stack):
        s3 = boto3.client("s3", region_name=TEST_AWS_REGION_NAME)
        s3.create_bucket(Bucket=TEST_ARTIFACT_BUCKET)
        provider = CloudFormationStackProvider(ClientFactory(), max_retries=0)
        packager = TemplatePackager(provider, bucket=TEST_ARTIFACT_BUCKET, prefix="templates")
        template = large_template(60_000)

        packaged = packager.package(template, stack)

        key = f"templates/{stack.name}/{template.fingerprint}.yml"
        assert packaged.url == (
            f"https://{TEST_ARTIFACT_BUCKET}.s3.{TEST_AWS_REGION_NAME}.amazonaws.com/{key}"
        )
        body = s3.get_object(Bucket=TEST_ARTIFACT_BUCKET, Key=key)["Body"].read()
        assert body == template.body

    @mock_aws
    def test_upload_to_missing_bucket(self, stack):
        provider = CloudFormationStackProvider(ClientFactory(), max_retries=0)
        packager = TemplatePackager(provider, bucket="does-not-exist", prefix="templates")

        with pytest.raises(PackagingError, match="s3://does-not-exist/templates/"):
            packager.package(large_template(60_000), stack)


def test_diff_parameters():
    diff = diff_parameters({"A": "1", "B": "2"}, {"B": "3", "C": "4"})

    assert diff.added == {"C": "4"}
    assert diff.removed == {"A": "1"}
    assert diff.changed == {"B": ("2", "3")}


def test_diff_parameters_of_new_stack():
    diff = diff_parameters(None, {"A": "1"})

    assert diff.added == {"A": "1"}
    assert not diff.removed
    assert not diff.changed
