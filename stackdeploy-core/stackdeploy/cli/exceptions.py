import typing as t

import click
from click import ClickException, echo


class CLIError(ClickException):
    """A ClickException with a red error message"""

    def format_message(self) -> str:
        return click.style(f"Error: {self.message}", fg="red")

    def show(self, file: t.Optional[t.IO[t.Any]] = None) -> None:
        echo(self.format_message(), file=file, err=file is None)
