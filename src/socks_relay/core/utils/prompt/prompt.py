"""Base class for live terminal panels."""

from rich.console import Console, RenderableType
from rich.live import Live

console = Console()


class PromptHandler:
    """Base class for panels that redraw themselves on a timer.

    Args:
        refresh_rate: Seconds between redraws
    """

    def __init__(self, refresh_rate: float = 1.0) -> None:
        self.refresh_rate = refresh_rate

    def create_live_display(self, content: RenderableType) -> Live:
        """Create a transient live display redrawn at the handler's rate."""
        return Live(
            content,
            console=console,
            refresh_per_second=max(1, round(1 / self.refresh_rate)),
            transient=True,
        )
