"""Colors of the text report."""

from rich.style import Style

PASS_STYLE = Style(color="green")
FAIL_STYLE = Style(color="bright_red")
SKIP_STYLE = Style(color="yellow")
