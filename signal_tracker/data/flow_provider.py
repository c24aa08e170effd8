"""On-chain exchange flow source backed by blockchain.info"""
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import aiohttp

from signal_tracker.data.providers import FlowTransfer

logger = logging.getLogger(__name__)

SATOSHI_PER_BTC = 100_000_000

# Known exchange hot/cold wallets
EXCHANGE_ADDRESSES: FrozenSet[str] = frozenset({
    "34xp4vRoCGJym3xR7yCVPFHoCNxv4Twseo",
    "bc1qm34lsc65zpw79lxes69zkqmk6ee3ewf0j77s3h",
    "3M219KR5vEneNb47ewrPfWyb5jQ2DjxRP6",
    "bc1qgdjqv0av3q56jvd82tkdjpy7gdp9ut8tlqmgrpmv24sq90ecnvqqjwvw97",
    "3D2oetdNuZUqQHPJmcMDDHYoqkyNVsFk9r",
})


def classify_transactions(
    txs: Iterable[Dict[str, Any]],
    btc_price: float,
    min_value_usd: float = 1_000_000,
    exchange_addresses: FrozenSet[str] = EXCHANGE_ADDRESSES,
    limit: int = 20,
) -> List[FlowTransfer]:
    """
    Keep large transactions and label them relative to exchange wallets.

    Funds moving into an exchange wallet (and not out of one) are an
    inflow; funds leaving an exchange wallet (and not into one) are an
    outflow; anything else is a plain transfer.

    Args:
        txs: Raw blockchain.info transactions
        btc_price: BTC/USD price used to value outputs
        min_value_usd: Minimum transaction value to keep
        exchange_addresses: Known exchange addresses
        limit: Maximum transfers returned

    Returns:
        Labelled transfers
    """
    transfers = []
    for tx in txs:
        outputs = tx.get("out") or []
        inputs = tx.get("inputs") or []
        amount = sum(o.get("value", 0) for o in outputs) / SATOSHI_PER_BTC
        usd_value = amount * btc_price
        if usd_value < min_value_usd:
            continue

        senders = {(i.get("prev_out") or {}).get("addr") for i in inputs}
        receivers = {o.get("addr") for o in outputs}
        from_exchange = bool(senders & exchange_addresses)
        to_exchange = bool(receivers & exchange_addresses)

        if to_exchange and not from_exchange:
            flow = "inflow"
        elif from_exchange and not to_exchange:
            flow = "outflow"
        else:
            flow = "transfer"

        transfers.append(FlowTransfer(
            tx_hash=str(tx.get("hash", "")),
            flow=flow,
            amount=amount,
            usd_value=usd_value,
        ))
        if len(transfers) >= limit:
            break
    return transfers


class BlockchainInfoFlowSource:
    """
    Flow source reading unconfirmed BTC transactions.

    Only BTC pairs have readings; any failure yields no readings.
    """

    BASE_URL = "https://blockchain.info"

    def __init__(self, min_value_usd: float = 1_000_000, timeout_seconds: float = 10.0):
        """
        Initialize flow source.

        Args:
            min_value_usd: Minimum transaction value to consider
            timeout_seconds: HTTP request timeout
        """
        self.min_value_usd = min_value_usd
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _get_json(self, session: aiohttp.ClientSession, path: str) -> Optional[Dict[str, Any]]:
        async with session.get(f"{self.BASE_URL}{path}", headers={"Accept": "application/json"}) as response:
            if response.status != 200:
                logger.warning(f"blockchain.info {path} returned {response.status}")
                return None
            return await response.json(content_type=None)

    async def transfers(self, pair: str) -> List[FlowTransfer]:
        if not pair.upper().startswith("BTC/"):
            return []

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                ticker = await self._get_json(session, "/ticker")
                if not ticker or "USD" not in ticker:
                    return []
                btc_price = float(ticker["USD"]["last"])

                data = await self._get_json(session, "/unconfirmed-transactions?format=json")
                if not data:
                    return []

            transfers = classify_transactions(data.get("txs", []), btc_price, self.min_value_usd)
            logger.info(f"Found {len(transfers)} BTC transfers over ${self.min_value_usd:,.0f}")
            return transfers

        except Exception as e:
            logger.error(f"blockchain.info flow fetch failed: {e}")
            return []
