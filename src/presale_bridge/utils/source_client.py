"""
Source-chain client for the presale contract.

Block-range queries and contract reads go over HTTP RPC; the live feed uses a
WebSocket ``LogsSubscription`` covering every relayed event signature. Logs
from both paths are normalised into ``RawEvent`` with arguments in ABI order.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3
from web3.providers import WebSocketProvider
from web3.types import EventData
from web3.utils.subscriptions import LogsSubscription, LogsSubscriptionContext

from ..models import EventType, RawEvent, RoundPurchase
from .contract_utility import ContractUtility

RawEventHandler = Callable[[RawEvent], Awaitable[Any]]


def _event_signature(abi: list, event_name: str) -> str:
    for entry in abi:
        if entry.get("type") == "event" and entry.get("name") == event_name:
            types = ",".join(param["type"] for param in entry.get("inputs", []))
            return f"{event_name}({types})"
    raise ValueError(f"Event {event_name} not found in contract ABI")


def _to_int(value: Any) -> int:
    """Parse block numbers and log indexes delivered either as ints or hex strings."""
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, byteorder="big")
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return 0


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, str) and Web3.is_address(value):
        return Web3.to_checksum_address(value)
    return value


class SourceChainClient:
    """
    Read-only access to the presale contract.

    Features:
    - Block-range log queries per event type
    - Live WebSocket subscription to all relayed events
    - Per-user round and purchase lookups used for enrichment
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        abi: list,
        ws_url: str = "",
        request_timeout: int = 30,
    ):
        """
        Initialize the client.

        Args:
            rpc_url: HTTP RPC endpoint URL
            contract_address: Address of the presale contract
            abi: Presale contract ABI
            ws_url: WebSocket endpoint for subscriptions
            request_timeout: HTTP request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.contract_address = Web3.to_checksum_address(contract_address)

        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=abi)

        # Argument order and topic per relayed event
        self._input_names: dict[str, list[str]] = {}
        self._topic_names: dict[HexBytes, str] = {}
        for event_type in EventType:
            name = event_type.value
            self._input_names[name] = ContractUtility.event_input_names(abi, name)
            self._topic_names[HexBytes(Web3.keccak(text=_event_signature(abi, name)))] = name

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def block_number(self) -> int:
        return await self.w3.eth.block_number

    async def has_contract_code(self) -> bool:
        """Whether any code is deployed at the configured contract address."""
        code = await self.w3.eth.get_code(self.contract_address)
        return len(code) > 0

    async def query_range(self, from_block: int, to_block: int, event_type: str) -> list[RawEvent]:
        """
        Fetch all logs of one event type in an inclusive block range.

        Args:
            from_block: First block to scan
            to_block: Last block to scan
            event_type: Event name from the presale ABI
        """
        event_obj = getattr(self.contract.events, event_type)
        logs = await event_obj().get_logs(from_block=from_block, to_block=to_block)
        return [self.to_raw_event(log) for log in logs]

    async def subscribe(self, event_types: Iterable[str], on_event: RawEventHandler) -> None:
        """
        Stream live events to ``on_event`` until the connection drops.

        Returns or raises when the WebSocket goes away; reconnecting is the
        caller's decision.
        """
        wanted = set(event_types)
        topics = [[topic for topic, name in self._topic_names.items() if name in wanted]]

        async with AsyncWeb3(
            WebSocketProvider(
                self.ws_url,
                request_timeout=60,
                subscription_response_queue_size=10000,
            )
        ) as w3:
            self.logger.info(f"WebSocket connected: {self.ws_url}")

            async def handler(handler_context: LogsSubscriptionContext) -> None:
                await self._handle_log(handler_context.result, on_event)

            logs_subscription = LogsSubscription(
                label="presale-events-subscription",
                address=self.contract_address,
                topics=topics,
                handler=handler,
            )

            self.logger.info(f"Subscribing to presale events on {self.contract_address}")
            await w3.subscription_manager.subscribe([logs_subscription])
            await w3.subscription_manager.handle_subscriptions()

    async def _handle_log(self, log_receipt: Any, on_event: RawEventHandler) -> None:
        try:
            raw_event = self.decode_log(log_receipt)
        except Exception as e:
            self.logger.error(f"Error decoding subscription log: {e}", exc_info=True)
            return

        if raw_event is None:
            return

        try:
            await on_event(raw_event)
        except Exception as e:
            # The pull channel will pick the event up again
            self.logger.error(
                f"Error handling subscription event {raw_event.event_id}: {e}", exc_info=True
            )

    def decode_log(self, log_receipt: Any) -> RawEvent | None:
        """
        Decode a raw subscription log, None if it is not a relayed event.

        Handles both dict-like and attribute-style receipts with ints or hex
        strings for the numeric fields.
        """
        def field(name: str, default: Any = None) -> Any:
            if hasattr(log_receipt, "get") and callable(log_receipt.get):
                return log_receipt.get(name, default)
            return getattr(log_receipt, name, default)

        topics = [HexBytes(t) for t in field("topics", []) or []]
        if not topics:
            return None

        event_name = self._topic_names.get(topics[0])
        if event_name is None:
            self.logger.debug(f"Ignoring log with unknown topic {Web3.to_hex(topics[0])}")
            return None

        log_entry = {
            "address": field("address"),
            "blockHash": HexBytes(field("blockHash") or b""),
            "blockNumber": _to_int(field("blockNumber", 0)),
            "data": HexBytes(field("data") or b""),
            "logIndex": _to_int(field("logIndex", 0)),
            "topics": topics,
            "transactionHash": HexBytes(field("transactionHash") or b""),
            "transactionIndex": _to_int(field("transactionIndex", 0)),
        }
        event_data = getattr(self.contract.events, event_name)().process_log(log_entry)
        return self.to_raw_event(event_data)

    def to_raw_event(self, event_data: EventData) -> RawEvent:
        """Normalise decoded event data into a RawEvent."""
        event_name = event_data["event"]
        args = event_data["args"]
        names = self._input_names.get(event_name) or list(args.keys())
        return RawEvent(
            event_type=event_name,
            transaction_hash=Web3.to_hex(event_data["transactionHash"]),
            log_index=_to_int(event_data["logIndex"]),
            block_number=_to_int(event_data["blockNumber"]),
            args=tuple(_normalize_value(args[name]) for name in names),
        )

    async def get_user_rounds(self, address: str) -> list[int]:
        rounds = await self.contract.functions.getUserRounds(
            Web3.to_checksum_address(address)
        ).call()
        return [int(r) for r in rounds]

    async def get_user_round_purchase(self, address: str, round_id: int) -> RoundPurchase:
        (
            amount_bought,
            amount_claimed,
            total_claimable,
            cliff_completed,
            last_claim_time,
            unclaimed_periods_passed,
        ) = await self.contract.functions.getUserRoundPurchase(
            Web3.to_checksum_address(address), round_id
        ).call()
        return RoundPurchase(
            amount_bought=str(amount_bought),
            amount_claimed=str(amount_claimed),
            total_claimable=str(total_claimable),
            cliff_completed=bool(cliff_completed),
            last_claim_time=str(last_claim_time),
            unclaimed_periods_passed=str(unclaimed_periods_passed),
        )

    async def close(self) -> None:
        """Release the HTTP provider session."""
        provider = self.w3.provider
        if hasattr(provider, "disconnect"):
            try:
                await provider.disconnect()
            except Exception as e:
                self.logger.warning(f"Error closing source chain provider: {e}")
