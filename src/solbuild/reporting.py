"""Gas reporting sink.

Collects gas figures per source unit during a build and renders a summary
table with Rich. Disabled reporters accept records and do nothing. A
reporter never influences build status.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console
from rich.table import Table

from .config.project_config import GasReporterConfig
from .networks import NetworkTarget

logger = logging.getLogger(__name__)

WEI_PER_TOKEN = 10**18


@dataclass
class GasRow:
    """Aggregated gas figures for one unit."""

    unit: str
    samples: list[int] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return len(self.samples)

    @property
    def min(self) -> int:
        return min(self.samples)

    @property
    def max(self) -> int:
        return max(self.samples)

    @property
    def avg(self) -> int:
        return round(sum(self.samples) / len(self.samples))


class GasReporter:
    """Per-unit gas accumulator.

    Args:
        config: gasReporter settings.
        network: Network whose gas price is used when none is configured.
    """

    def __init__(self, config: GasReporterConfig, network: NetworkTarget | None = None) -> None:
        self.config = config
        self.network = network
        self._rows: dict[str, GasRow] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def gas_price(self) -> int | None:
        """Gas price in wei: configured value, else the network default."""
        if self.config.gas_price is not None:
            return self.config.gas_price
        if self.network is not None:
            return self.network.gas_price
        return None

    def record(self, unit: str, gas_used: int) -> None:
        if not self.enabled:
            return
        if gas_used < 0:
            logger.warning("Ignoring negative gas figure for %s: %d", unit, gas_used)
            return
        with self._lock:
            self._rows.setdefault(unit, GasRow(unit)).samples.append(int(gas_used))

    def reset(self) -> None:
        """Drop every recorded figure; called at the start of each build."""
        with self._lock:
            self._rows.clear()

    def cost(self, gas: int) -> float | None:
        """Cost of ``gas`` in the configured currency, when a token price is known."""
        gas_price = self.gas_price
        if self.config.token_price is None or gas_price is None:
            return None
        return gas * gas_price / WEI_PER_TOKEN * self.config.token_price

    def rows(self) -> list[dict[str, Any]]:
        """Summary rows sorted by unit."""
        with self._lock:
            rows = [self._rows[k] for k in sorted(self._rows)]
        result = []
        for row in rows:
            cost = self.cost(row.avg)
            result.append(
                {
                    "unit": row.unit,
                    "calls": row.calls,
                    "min": row.min,
                    "max": row.max,
                    "avg": row.avg,
                    "cost": round(cost, 6) if cost is not None else None,
                    "currency": self.config.currency,
                }
            )
        return result

    def render(self, console: Console | None = None) -> None:
        if not self.enabled:
            return
        console = console if console is not None else Console()
        rows = self.rows()
        if not rows:
            console.print("[dim]No gas figures recorded[/dim]")
            return

        price = self.gas_price
        caption = f"gas price {price / 1_000_000_000:g} gwei" if price is not None else "no gas price configured"
        table = Table(title="Gas report", caption=caption)
        table.add_column("Unit", style="bold")
        table.add_column("#", justify="right")
        table.add_column("Min", justify="right")
        table.add_column("Max", justify="right")
        table.add_column("Avg", justify="right")
        table.add_column(f"{self.config.currency} (avg)", justify="right")
        for row in rows:
            cost = f"{row['cost']:.4f}" if row["cost"] is not None else "-"
            table.add_row(row["unit"], str(row["calls"]), f"{row['min']:,}", f"{row['max']:,}", f"{row['avg']:,}", cost)
        console.print(table)
