"""
MODULE OVERVIEW:
The Rich terminal dashboard for a live gateway session.

WHAT IS HAPPENING HERE:
The dashboard subscribes to the client's dispatcher like any other consumer:
`state` feeds the timeline, the raw `event` category and every named category
feed the event table. It never reaches into the session manager's internals
beyond its read-only observables.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from collections import deque
from datetime import datetime
from typing import Any
import asyncio

from kook_gateway.client.event_router import GENERIC_CATEGORIES, RAW_EVENT
from kook_gateway.client.gateway_client import GatewayClient
from kook_gateway.shared.models import ConnectionState, Event

STATE_COLORS = {
    ConnectionState.ESTABLISHED: "green",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.AWAITING_HANDSHAKE: "yellow",
    ConnectionState.RESOLVING_ENDPOINT: "yellow",
    ConnectionState.RECONNECTING: "yellow",
}


class Visualizer:
    def __init__(self, client: GatewayClient):
        self.client = client
        self.recent_events = deque(maxlen=12)
        self.timeline = deque(maxlen=6)
        self.last_error = ""

    def on_state(self, state: ConnectionState):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {state.value}")

    def on_error(self, error: Exception):
        self.last_error = str(error)[:80]

    def on_category(self, name: str, payload: Any):
        if name in GENERIC_CATEGORIES or name == RAW_EVENT or not isinstance(payload, Event):
            return
        ts = datetime.now().strftime("%H:%M:%S")
        content = payload.content or str(payload.extra)
        content = content[:40] + "..." if len(content) > 40 else content
        self.recent_events.appendleft((ts, name, str(payload.type), payload.channel_type.value, content))

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="session"),
            Layout(name="stats"),
            Layout(name="timeline")
        )

        state = self.client.state
        color = STATE_COLORS.get(state, "red")
        layout["header"].update(Panel(f"[{color} bold]KOOK Gateway | State: {state.value}[/]", style=color))

        table = Table(title="Live Event Feed", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Category", style="magenta")
        table.add_column("Type", style="blue")
        table.add_column("Channel", style="blue")
        table.add_column("Content", style="green")

        for e in self.recent_events:
            table.add_row(*e)

        layout["left"].update(Panel(table, title="Feed"))

        session_text = (
            f"Session: {self.client.session_id or '-'}\n"
            f"Last sn: {self.client.last_sequence}\n"
            f"Endpoint: {self.client.gateway_url or '-'}\n"
            f"Last error: {self.last_error or '-'}"
        )
        layout["session"].update(Panel(session_text, title="Session"))

        stats = self.client.stats
        stats_text = (
            f"Frames: {stats['frames_received']}\n"
            f"Events: {stats['events_dispatched']}\n"
            f"Heartbeats: {stats['heartbeats_sent']}\n"
            f"Reconnects: {stats['reconnect_count']}\n"
            f"Decode errors: {stats['decode_errors']}"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, duration_s: float):
        self.client.on("state", self.on_state)
        self.client.on("error", self.on_error)
        self.client.events.on_any(self.on_category)

        client_task = asyncio.create_task(self.client.run(duration_s))

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not client_task.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
        await client_task
