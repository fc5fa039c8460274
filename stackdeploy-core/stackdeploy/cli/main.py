import logging
import os
import traceback
from typing import TYPE_CHECKING, Optional

import click

from stackdeploy import config
from stackdeploy.cli.console import ConsoleProgressSink, console
from stackdeploy.cli.exceptions import CLIError
from stackdeploy.constants import VERSION
from stackdeploy.deploy.models import NestedStackReference, ParameterSet, StackIdentity, Template
from stackdeploy.utils.json import parse_json_or_yaml
from stackdeploy.utils.strings import parse_key_value_pairs

if TYPE_CHECKING:
    from stackdeploy.deploy.engine import StackDeployer


class StackDeployCliGroup(click.Group):
    """
    The top-level ``stackdeploy`` command group. It implements global exception handling by:

    - Ignoring click exceptions (already handled)
    - Wrapping all other exceptions in a CLIError, deployment errors are rendered with their context
    """

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except click.exceptions.Exit:
            # raise Exit exceptions unmodified (e.g., raised on --help)
            raise
        except click.ClickException:
            if config.DEBUG:
                click.echo(traceback.format_exc())
            raise
        except Exception as e:
            if config.DEBUG:
                click.echo(traceback.format_exc())
            raise CLIError(str(e)) from e


def _setup_cli_debug() -> None:
    from stackdeploy.logging.setup import setup_logging_for_cli

    config.DEBUG = True
    os.environ["DEBUG"] = "1"

    setup_logging_for_cli(logging.DEBUG)


def create_deployer(
    region: Optional[str],
    profile: Optional[str],
    endpoint_url: Optional[str],
    bucket: Optional[str],
) -> tuple["StackDeployer", str]:
    """Creates the deployer for the given account settings, and returns it with the resolved region."""
    from stackdeploy.aws.connect import ClientFactory
    from stackdeploy.deploy.engine import StackDeployer
    from stackdeploy.deploy.packager import TemplatePackager
    from stackdeploy.deploy.provider import CloudFormationStackProvider

    factory = ClientFactory.from_profile(profile, region, endpoint_url=endpoint_url)
    provider = CloudFormationStackProvider(factory)
    deployer = StackDeployer(provider, TemplatePackager(provider, bucket=bucket))
    return deployer, region or factory.region_name


def load_parameters_file(path: str) -> dict[str, str]:
    """
    Loads template parameters from a JSON or YAML file, either as a mapping of names to values or in the
    CloudFormation format (a list of ``ParameterKey``/``ParameterValue`` objects).
    """
    with open(path) as f:
        document = parse_json_or_yaml(f.read())
    if isinstance(document, dict):
        return {key: "" if value is None else str(value) for key, value in document.items()}
    if isinstance(document, list):
        try:
            return dict(ParameterSet.from_provider(document))
        except (KeyError, TypeError) as e:
            raise CLIError(f"Invalid parameter in {path}: {e}")
    raise CLIError(f"Parameters file {path} must contain a mapping or a list of parameters")


def _parse_pairs(pairs, option: str) -> dict[str, str]:
    try:
        return parse_key_value_pairs(pairs)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint=option)


_region_option = click.option("--region", help="The region of the stack")
_profile_option = click.option("--profile", help="The AWS profile to use")
_endpoint_option = click.option(
    "--endpoint-url", help="Custom endpoint for all provider calls (default: $AWS_ENDPOINT_URL)"
)
_timeout_option = click.option(
    "--timeout",
    type=float,
    help="Stop waiting after this many seconds, the running operation continues",
)


@click.group(
    name="stackdeploy",
    help="Deploy CloudFormation stacks through change sets",
    cls=StackDeployCliGroup,
    context_settings={
        "help_option_names": ["-h", "--help"],
        "show_default": True,
    },
)
@click.version_option(
    VERSION,
    "--version",
    "-v",
    message="stackdeploy %(version)s",
    help="Show the version of stackdeploy and exit",
)
@click.option("-d", "--debug", is_flag=True, help="Enable debug logging")
def stackdeploy(debug: bool) -> None:
    if debug:
        _setup_cli_debug()
    elif config.STACKDEPLOY_LOG:
        from stackdeploy.logging.setup import setup_logging_from_config

        setup_logging_from_config()


@stackdeploy.command(name="deploy", short_help="Create or update a stack")
@click.option("--stack-name", "-n", required=True, help="Name of the stack")
@click.option(
    "--template-file",
    "-t",
    required=True,
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="Path of the rendered template",
)
@click.option(
    "--parameter", "-p", "parameters", multiple=True, help="Template parameter as KEY=VALUE"
)
@click.option(
    "--parameters-file",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="JSON or YAML file with template parameters",
)
@click.option("--tag", "tags", multiple=True, help="Stack tag as KEY=VALUE")
@_region_option
@_profile_option
@_endpoint_option
@click.option(
    "--bucket",
    help="Bucket for templates too large to be passed inline (default: $STACKDEPLOY_ARTIFACT_BUCKET)",
)
@click.option(
    "--addons-template",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="Path of an addons template, deployed as nested stack",
)
@click.option(
    "--addons-parameter",
    "addons_parameters",
    multiple=True,
    help="Addons stack parameter as KEY=VALUE",
)
@_timeout_option
def cmd_deploy(
    stack_name: str,
    template_file: str,
    parameters: tuple[str, ...],
    parameters_file: Optional[str],
    tags: tuple[str, ...],
    region: Optional[str],
    profile: Optional[str],
    endpoint_url: Optional[str],
    bucket: Optional[str],
    addons_template: Optional[str],
    addons_parameters: tuple[str, ...],
    timeout: Optional[float],
) -> None:
    """
    Deploy a rendered template to a stack.

    Creates the stack if it does not exist, updates it otherwise, and waits until the deployment is
    finished. A stack that failed to be created (ROLLBACK_COMPLETE) is deleted and created again.
    """
    values = load_parameters_file(parameters_file) if parameters_file else {}
    values.update(_parse_pairs(parameters, "--parameter"))

    nested = None
    if addons_template:
        nested = NestedStackReference(
            Template.from_file(addons_template),
            ParameterSet(_parse_pairs(addons_parameters, "--addons-parameter")),
        )
    elif addons_parameters:
        raise click.BadParameter("requires --addons-template", param_hint="--addons-parameter")

    deployer, region = create_deployer(region, profile, endpoint_url, bucket)
    result = deployer.deploy(
        StackIdentity(stack_name, region),
        Template.from_file(template_file),
        ParameterSet(values),
        ConsoleProgressSink(console),
        nested=nested,
        tags=_parse_pairs(tags, "--tag"),
        timeout=timeout,
    )

    if result.outputs:
        from rich.table import Table

        grid = Table(show_header=True)
        grid.add_column("Output")
        grid.add_column("Value")
        for key, value in result.outputs.items():
            grid.add_row(key, value)
        console.print(grid)


@stackdeploy.command(name="delete", short_help="Delete a stack")
@click.option("--stack-name", "-n", required=True, help="Name of the stack")
@_region_option
@_profile_option
@_endpoint_option
@_timeout_option
def cmd_delete(
    stack_name: str,
    region: Optional[str],
    profile: Optional[str],
    endpoint_url: Optional[str],
    timeout: Optional[float],
) -> None:
    """
    Delete a stack, together with its addons stack, and wait until it is gone.
    """
    deployer, region = create_deployer(region, profile, endpoint_url, None)
    stack = StackIdentity(stack_name, region)
    if deployer.delete(stack, ConsoleProgressSink(console), timeout=timeout):
        console.print(f"[green]:heavy_check_mark:[/green] stack {stack_name} deleted")
    else:
        console.print(f"stack {stack_name} does not exist")


def main():
    stackdeploy()


if __name__ == "__main__":
    main()
