from typing import Iterable

KNOWN_QUOTE_SYMBOLS = frozenset({"WETH", "ETH", "USDC", "USDT", "DAI", "BUSD", "WBNB", "BNB"})


class QuoteAssetStrategy:
    """Decides which pool token is priced (base) and which one prices it (quote).

    A symbol from the known-quote table wins when exactly one side has one.
    Otherwise token0 is taken as base when the caller's USD price is below 1,
    which is a guess and can be wrong for unfamiliar pairs.
    """

    def __init__(self, known_quotes: Iterable[str] = KNOWN_QUOTE_SYMBOLS):
        self.known_quotes = frozenset(symbol.upper() for symbol in known_quotes)

    def is_known_quote(self, symbol: str) -> bool:
        return symbol.upper() in self.known_quotes

    def token0_is_base(self, symbol0: str, symbol1: str, price_usd: float) -> bool:
        token0_quote = self.is_known_quote(symbol0)
        token1_quote = self.is_known_quote(symbol1)
        if token1_quote and not token0_quote:
            return True
        if token0_quote and not token1_quote:
            return False
        return price_usd < 1
