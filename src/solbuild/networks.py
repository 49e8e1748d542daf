"""Network Target Registry.

Static lookup table of named deployment targets. A NetworkTarget carries the
JSON-RPC endpoint, chain id and default gas price an external deployment
driver needs to route a compiled artifact to a live or test network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

import requests

from .errors import ConfigError, UnknownNetworkError

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 10


@dataclass(frozen=True)
class NetworkTarget:
    """Named deployment endpoint.

    Attributes:
        name: Network name (e.g. "bsc_testnet")
        url: JSON-RPC endpoint URL
        chain_id: EIP-155 chain identifier
        gas_price: Default gas price in wei
    """

    name: str
    url: str
    chain_id: int
    gas_price: int

    def __post_init__(self) -> None:
        if self.chain_id < 0:
            raise ConfigError(f"Network '{self.name}': chain id must be >= 0, got {self.chain_id}")
        if self.gas_price < 0:
            raise ConfigError(f"Network '{self.name}': gas price must be >= 0, got {self.gas_price}")

    @property
    def gas_price_gwei(self) -> float:
        return self.gas_price / 1_000_000_000

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "chainId": self.chain_id, "gasPrice": self.gas_price}

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "NetworkTarget":
        """Parse a ``networks.<name>`` entry.

        Raises:
            ConfigError: If url or chainId is missing or not an integer.
        """
        try:
            url = str(data["url"])
            chain_id = int(data["chainId"])
        except KeyError as e:
            raise ConfigError(f"Network '{name}' is missing required field {e}") from e
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Network '{name}' has an invalid chainId: {data.get('chainId')!r}") from e
        try:
            gas_price = int(data.get("gasPrice", 0))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Network '{name}' has an invalid gasPrice: {data.get('gasPrice')!r}") from e
        return cls(name=name, url=url, chain_id=chain_id, gas_price=gas_price)


def fetch_chain_id(url: str, timeout: float = RPC_TIMEOUT) -> int:
    """Ask a JSON-RPC endpoint for its chain id (``eth_chainId``).

    Raises:
        requests.RequestException: On transport or HTTP errors.
        ValueError: If the endpoint returns a JSON-RPC error or a malformed result.
    """
    response = requests.post(
        url,
        json={"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []},
        timeout=timeout,
    )
    response.raise_for_status()
    body = response.json()
    if "error" in body:
        raise ValueError(f"eth_chainId failed: {body['error']}")
    return int(body["result"], 16)


class NetworkRegistry:
    """Read-only mapping of network name -> NetworkTarget."""

    def __init__(self, targets: Iterable[NetworkTarget] = (), default: str | None = None) -> None:
        table: dict[str, NetworkTarget] = {}
        for target in targets:
            if target.name in table:
                raise ConfigError(f"Duplicate network name: {target.name}")
            table[target.name] = target
        self._targets = MappingProxyType(table)
        if default is not None and default not in table:
            raise UnknownNetworkError(default, self.names())
        self._default = default

    def get(self, name: str) -> NetworkTarget:
        """Return the target for a name.

        Raises:
            UnknownNetworkError: If the name is not configured.
        """
        target = self._targets.get(name)
        if target is None:
            raise UnknownNetworkError(name, self.names())
        return target

    def names(self) -> list[str]:
        return sorted(self._targets)

    @property
    def default_name(self) -> str | None:
        return self._default

    def default(self) -> NetworkTarget | None:
        return self._targets[self._default] if self._default else None

    def check_chain_id(self, name: str, timeout: float = RPC_TIMEOUT) -> tuple[bool, int]:
        """Compare a target's configured chain id with what its endpoint reports.

        Returns:
            (matches, reported_chain_id)
        """
        target = self.get(name)
        reported = fetch_chain_id(target.url, timeout=timeout)
        if reported != target.chain_id:
            logger.warning("Network %s reports chain id %d, configured %d", name, reported, target.chain_id)
        return reported == target.chain_id, reported

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default: str | None = None) -> "NetworkRegistry":
        return cls((NetworkTarget.from_dict(name, entry) for name, entry in sorted(data.items())), default=default)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __iter__(self) -> Iterator[NetworkTarget]:
        return iter(self._targets[n] for n in self.names())

    def __len__(self) -> int:
        return len(self._targets)
