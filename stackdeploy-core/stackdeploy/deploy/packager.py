import logging
from collections.abc import Mapping
from typing import Optional

from stackdeploy import config
from stackdeploy.deploy.exceptions import PackagingError, ProviderError
from stackdeploy.deploy.models import (
    PackagedTemplate,
    ParameterDiff,
    StackIdentity,
    Template,
)
from stackdeploy.deploy.provider import StackProvider

LOG = logging.getLogger(__name__)


class TemplatePackager:
    """
    Turns a template into a provider-ready payload. Templates up to ``inline_size_limit`` bytes are submitted
    inline, larger ones are written once to the artifact bucket and referenced by URL.
    """

    def __init__(
        self,
        provider: StackProvider,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
        inline_size_limit: Optional[int] = None,
    ):
        self.provider = provider
        self.bucket = config.ARTIFACT_BUCKET if bucket is None else bucket
        self.prefix = (config.ARTIFACT_PREFIX if prefix is None else prefix).strip("/")
        self.inline_size_limit = (
            config.TEMPLATE_INLINE_SIZE_LIMIT if inline_size_limit is None else inline_size_limit
        )

    def object_key(self, template: Template, stack: StackIdentity) -> str:
        key = f"{stack.name}/{template.fingerprint}.yml"
        return f"{self.prefix}/{key}" if self.prefix else key

    def package(
        self, template: Template, stack: StackIdentity, force_upload: bool = False
    ) -> PackagedTemplate:
        """
        Packages the given template for the given stack.

        :param template: the rendered template
        :param stack: the target stack, used to address the uploaded copy
        :param force_upload: upload the template regardless of its size (used for nested templates, which the
            provider can only reference by URL)
        :return: the packaged template
        :raises PackagingError: if the template must be uploaded but no bucket is configured, or the upload fails
        """
        if not force_upload and template.size <= self.inline_size_limit:
            return PackagedTemplate(template)

        if not self.bucket:
            if force_upload:
                message = "template must be uploaded, but no artifact bucket is configured"
            else:
                message = (
                    f"template of {template.size} bytes exceeds the inline limit of "
                    f"{self.inline_size_limit} bytes, but no artifact bucket is configured"
                )
            raise PackagingError(message).with_context(f"package template for stack {stack.name}")

        key = self.object_key(template, stack)
        LOG.debug("Uploading template of %s bytes to s3://%s/%s", template.size, self.bucket, key)
        try:
            url = self.provider.put_object(self.bucket, key, template.body, region=stack.region)
        except ProviderError as e:
            raise PackagingError(
                f"unable to upload template to s3://{self.bucket}/{key}: {e}"
            ).with_context(f"package template for stack {stack.name}") from e
        return PackagedTemplate(template, url=url)


def diff_parameters(
    previous: Optional[Mapping[str, str]], desired: Mapping[str, str]
) -> ParameterDiff:
    """Compares the parameters of the live stack with the desired ones. The result is advisory only."""
    previous = previous or {}
    return ParameterDiff(
        added={k: v for k, v in desired.items() if k not in previous},
        removed={k: v for k, v in previous.items() if k not in desired},
        changed={
            k: (previous[k], v) for k, v in desired.items() if k in previous and previous[k] != v
        },
    )
