from rich.console import Console
from rich.table import Table
from rich.text import Text

from stackdeploy.deploy.exceptions import DeployError, DeploymentFailedError
from stackdeploy.deploy.models import (
    ChangeSet,
    DeployResult,
    ParameterDiff,
    StackEvent,
    StackIdentity,
)
from stackdeploy.deploy.progress import ProgressSink

console = Console()

_STATUS_STYLES = (
    ("_FAILED", "red"),
    ("ROLLBACK", "yellow"),
    ("_COMPLETE", "green"),
    ("_IN_PROGRESS", "cyan"),
)


def status_style(status: str) -> str:
    for marker, style in _STATUS_STYLES:
        if marker in status:
            return style
    return "default"


class ConsoleProgressSink(ProgressSink):
    """Prints the progress of a deployment to a rich console."""

    def __init__(self, target: Console = None):
        self.console = target or console

    def on_change_set(self, change_set: ChangeSet, diff: ParameterDiff) -> None:
        if change_set.changes:
            table = Table(title=f"Changes to stack {change_set.stack.name}", show_header=True)
            table.add_column("Action")
            table.add_column("Logical ID")
            table.add_column("Type")
            table.add_column("Replacement")
            for change in change_set.changes:
                table.add_row(
                    change.action,
                    change.logical_resource_id,
                    change.resource_type or "",
                    change.replacement or "",
                )
            self.console.print(table)
        for line in diff.summary():
            self.console.print(f"  parameter {line}", highlight=False)

    def on_event(self, event: StackEvent) -> None:
        line = Text()
        line.append(event.timestamp.strftime("%H:%M:%S"), style="dim")
        line.append(f" {event.logical_resource_id} ")
        line.append(event.status, style=status_style(event.status))
        if event.status_reason:
            line.append(f" {event.status_reason}", style="dim")
        self.console.print(line)

    def on_complete(self, result: DeployResult) -> None:
        self.console.print(
            f"[green]:heavy_check_mark:[/green] stack {result.stack.name}: {result.outcome.value}"
        )

    def on_failure(self, stack: StackIdentity, error: DeployError) -> None:
        status = error.status if isinstance(error, DeploymentFailedError) else None
        self.console.print(
            f"[red]:heavy_multiplication_x:[/red] stack {stack.name}: [bold red]FAILED[/bold red]"
            + (f" ({status})" if status else "")
        )
