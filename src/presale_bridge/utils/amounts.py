"""Decimal conversion between source-chain and destination-chain token units."""

import logging

logger = logging.getLogger(__name__)


class AmountConverter:
    """
    Fixed decimal convention shared by the mint and burn paths.

    Source amounts carry ``source_decimals`` decimals, destination amounts
    ``destination_decimals``. Downscaling floors; the remainder is dropped.
    """

    def __init__(self, source_decimals: int = 18, destination_decimals: int = 8):
        self.source_decimals = source_decimals
        self.destination_decimals = destination_decimals

    def to_destination(self, source_amount: int) -> int:
        """
        Convert a raw source-chain amount into destination-chain base units.

        Raises:
            ValueError: If the amount is negative
        """
        if source_amount < 0:
            raise ValueError(f"Amount must be non-negative, got {source_amount}")

        shift = self.source_decimals - self.destination_decimals
        if shift >= 0:
            converted = source_amount // (10 ** shift)
            if converted * (10 ** shift) != source_amount:
                logger.debug(f"Dropped sub-unit remainder converting {source_amount}")
            return converted
        return source_amount * (10 ** -shift)
