"""Rich console output for notices, receipts and batch summaries."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import normalise_hex

console = Console(highlight=False)

_STATUS_STYLE = {
    "staged": "green",
    "executed": "green",
    "pending": "yellow",
    "not-nominated": "dim",
    "failed": "red",
}


def notice(message: str, *, style: str = "yellow", out: Optional[Console] = None) -> None:
    (out or console).print(message, style=style, markup=False)


def log_tx(receipt: Mapping[str, Any], *, out: Optional[Console] = None) -> None:
    """Render a mined transaction receipt."""

    status = receipt.get("status")
    body = (
        f"🧾 Hash: {normalise_hex(receipt.get('transactionHash'))}\n"
        f"📦 Block: {receipt.get('blockNumber')}\n"
        f"⛽ Gas used: {receipt.get('gasUsed')}\n"
        f"{'✅ Success' if status == 1 else '💥 Reverted'}"
    )
    (out or console).print(Panel(body, title="Transaction confirmed", border_style="cyan", title_align="left"))


def pending_table(address: str, pending: Iterable[Any], *, out: Optional[Console] = None) -> None:
    table = Table(title=f"Pending proposals: {address}")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("To", style="magenta")
    table.add_column("Data", style="green")
    for entry in pending:
        data = entry.data if len(entry.data) <= 26 else entry.data[:24] + "…"
        table.add_row(str(entry.identifier), entry.to, data)
    (out or console).print(table)


def summary_table(results: Iterable[Any], *, out: Optional[Console] = None) -> None:
    table = Table(title="Ownership staging summary")
    table.add_column("Contract", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", style="magenta")
    for result in results:
        style = _STATUS_STYLE.get(result.status, "white")
        table.add_row(result.label, Text(result.status, style=style), Text(result.detail or ""))
    (out or console).print(table)


__all__ = ["console", "log_tx", "notice", "pending_table", "summary_table"]
