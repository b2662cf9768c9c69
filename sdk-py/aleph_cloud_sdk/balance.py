"""
Hold balances as indexed by the API server
"""

import logging
from decimal import Decimal
from typing import Optional

import requests

from .config import SDKConfig
from .http import new_session
from .utils import to_decimal

logger = logging.getLogger(__name__)


class BalanceManager:
    def __init__(self, config: Optional[SDKConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or SDKConfig()
        self.session = session or new_session()

    def get_hold_balance(self, address: str) -> Decimal:
        """
        Token balance held by an address, on any supported chain.

        An address the API has never seen has a zero balance.
        """
        url = f"{self.config.api_server}/api/v0/addresses/{address}/balance"
        response = self.session.get(url, timeout=self.config.http_timeout)
        if response.status_code == 404:
            logger.debug("no balance indexed for %s", address)
            return Decimal(0)
        response.raise_for_status()
        return to_decimal(response.json().get("balance", 0))
