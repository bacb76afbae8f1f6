"""
Gateway Router

Maps a declared gateway identifier onto its adapter. The adapter set is
closed at construction time.
"""
from typing import Dict, Iterable, List
import logging

from ..exceptions import UnsupportedGatewayError
from .base import GatewayAdapter

logger = logging.getLogger(__name__)


class GatewayRouter:
    def __init__(self, adapters: Iterable[GatewayAdapter]):
        self._adapters: Dict[str, GatewayAdapter] = {}
        for adapter in adapters:
            if adapter.gateway_id in self._adapters:
                raise ValueError(f"Duplicate adapter for gateway: {adapter.gateway_id}")
            self._adapters[adapter.gateway_id] = adapter

        logger.info(f"Gateway router initialized: {self.supported_gateways}")

    @property
    def supported_gateways(self) -> List[str]:
        return sorted(self._adapters)

    def resolve(self, gateway_id: str) -> GatewayAdapter:
        """
        Look up the adapter for a gateway.

        Raises:
            UnsupportedGatewayError: identifier not registered (client error)
        """
        adapter = self._adapters.get(gateway_id)
        if adapter is None:
            raise UnsupportedGatewayError(gateway_id, self.supported_gateways)
        return adapter

    def __contains__(self, gateway_id: str) -> bool:
        return gateway_id in self._adapters
