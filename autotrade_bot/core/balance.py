"""SOL balance lookups used before every buy."""

import logging
from typing import Dict, Optional

from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey  # type: ignore

from ..config.strategy_config import Credential
from ..constants import LAMPORTS_PER_SOL
from ..exceptions import ConfigurationException
from .trade_sources import keypair_from_secret

logger = logging.getLogger(__name__)


class BalanceProvider:
    async def get_balance(self, credential: Optional[Credential]) -> float:
        raise NotImplementedError


class RpcBalanceProvider(BalanceProvider):
    def __init__(self, client: AsyncClient):
        self.client = client

    async def get_balance(self, credential: Optional[Credential]) -> float:
        """Returns available SOL balance, 0.0 when it cannot be read."""
        if credential is None:
            return 0.0
        try:
            if credential.public_key:
                pubkey = Pubkey.from_string(credential.public_key)
            else:
                pubkey = keypair_from_secret(credential.secret).pubkey()
        except (ValueError, ConfigurationException) as e:
            logger.error(f"Unusable wallet for balance lookup: {e}")
            return 0.0
        try:
            resp = await self.client.get_balance(pubkey)
            if resp.value is not None:
                return resp.value / LAMPORTS_PER_SOL
        except Exception as e:
            logger.warning(f"Failed to get SOL balance for {str(pubkey)[:8]}...: {e}")
        return 0.0


class StaticBalanceProvider(BalanceProvider):
    """Fixed balances for paper mode; unknown wallets get the default."""

    def __init__(self, default: float = 10.0, balances: Optional[Dict[str, float]] = None):
        self.default = default
        self.balances = dict(balances or {})

    async def get_balance(self, credential: Optional[Credential]) -> float:
        if credential is None:
            return self.default
        return self.balances.get(credential.public_key, self.default)
