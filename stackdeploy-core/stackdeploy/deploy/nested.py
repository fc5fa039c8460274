import logging

from stackdeploy.deploy.exceptions import PackagingError
from stackdeploy.deploy.models import NestedStackReference, ParameterSet, StackIdentity
from stackdeploy.deploy.packager import TemplatePackager

LOG = logging.getLogger(__name__)


class NestedStackResolver:
    """
    Prepares the parameters of a parent stack that declares an addons stack. The child template is uploaded
    (the provider references nested templates by URL only) and its URL is passed in ``url_parameter``. The
    child parameters are forwarded as parent parameters, the parent template hands them to the nested resource.
    """

    def __init__(self, packager: TemplatePackager):
        self.packager = packager

    def resolve(
        self, stack: StackIdentity, parameters: ParameterSet, nested: NestedStackReference
    ) -> ParameterSet:
        packaged = self.packager.package(nested.template, stack, force_upload=True)
        LOG.debug("Addons template of stack %s uploaded to %s", stack.name, packaged.url)

        forwarded = {nested.url_parameter: packaged.url, **nested.parameters}
        for key, value in forwarded.items():
            if key in parameters and parameters[key] != value:
                raise PackagingError(
                    f"parameter {key} of the addons stack conflicts with the parent parameter value"
                ).with_context(f"resolve addons stack of {stack.name}")
        return parameters.merge(forwarded)
