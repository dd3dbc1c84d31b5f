"""Console status view for a running swarm.

Renders the orchestrator's registry with Rich: a per-bot table and a
summary panel of connection states.
"""

import logging
from typing import Dict, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from bots.base import ClientState
from core.orchestrator import SwarmOrchestrator

logger = logging.getLogger(__name__)

STATE_STYLES: Dict[ClientState, str] = {
    ClientState.BUILT: "dim",
    ClientState.CONNECTING: "yellow",
    ClientState.CONNECTED: "green",
    ClientState.FAILED: "red",
    ClientState.DISCONNECTED: "magenta",
}


class SwarmDashboard:
    """CLI view of a swarm's bots and their connection states."""

    def __init__(
        self, orchestrator: SwarmOrchestrator, console: Optional[Console] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.console = console or Console()

    def render_table(self) -> Table:
        """One row per bot: index, name, proxy, state, last error."""
        table = Table(
            title="Swarm",
            box=box.SIMPLE_HEAVY,
            show_lines=False,
        )
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Bot", style="bold")
        table.add_column("Proxy")
        table.add_column("State")
        table.add_column("Last error", overflow="fold")

        for i, bot in enumerate(self.orchestrator.clients):
            table.add_row(
                str(i),
                bot.name,
                bot.proxy.masked() if bot.proxy else "direct",
                Text(bot.state.value, style=STATE_STYLES.get(bot.state, "")),
                bot.last_error or "",
            )
        return table

    def render_summary(self) -> Panel:
        """Panel with run flags and bot counts per state."""
        stats = self.orchestrator.get_stats()
        text = Text()

        text.append("Running: ", style="bold")
        text.append(
            "yes" if self.orchestrator.is_running() else "no",
            style="green" if self.orchestrator.is_running() else "red",
        )
        text.append("  Paused: ", style="bold")
        text.append("yes" if self.orchestrator.is_paused() else "no")
        text.append("\n")

        text.append("Bots: ", style="bold")
        text.append(f"{stats.get('total', 0)}")
        for state in ClientState:
            count = stats.get(state.value, 0)
            if count:
                text.append(f"  {state.value}: ")
                text.append(str(count), style=STATE_STYLES[state])

        return Panel(text, title="Summary", box=box.ROUNDED)

    def print_status(self) -> None:
        self.console.print(self.render_summary())
        self.console.print(self.render_table())
