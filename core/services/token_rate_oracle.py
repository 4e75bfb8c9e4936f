from __future__ import annotations

from decimal import ROUND_CEILING, Decimal, InvalidOperation, localcontext
from typing import Dict, Mapping, Union

from config import get_settings
from core.domain.entities.fee_quote_entity import NATIVE_TOKEN, SPONSORED_TOKEN
from core.services.exceptions import UnsupportedTokenError
from core.services.normalize import _norm_upper


class TokenRateOracle:
    """
    Converts native-denominated amounts into the token a user pays with.

    Rates are "token units per 1 native unit". Conversions round up so the
    quoted maximum never under-collects.
    """

    def __init__(self, rates: Mapping[str, Union[str, Decimal, int]]):
        self._rates: Dict[str, Decimal] = {}
        for symbol, raw in rates.items():
            try:
                rate = Decimal(str(raw))
            except InvalidOperation as exc:
                raise ValueError(f"Invalid rate for {symbol!r}: {raw!r}") from exc
            if rate <= 0:
                raise ValueError(f"Rate for {symbol!r} must be > 0")
            self._rates[_norm_upper(symbol)] = rate

    @classmethod
    def from_settings(cls) -> "TokenRateOracle":
        return cls(get_settings().TOKEN_RATES)

    @staticmethod
    def is_native(token: str) -> bool:
        sym = _norm_upper(token)
        return sym in ("", NATIVE_TOKEN, SPONSORED_TOKEN)

    def convert(self, amount_native: int, token: str) -> int:
        if self.is_native(token):
            return int(amount_native)

        rate = self._rates.get(_norm_upper(token))
        if rate is None:
            raise UnsupportedTokenError(token)

        with localcontext() as ctx:
            ctx.prec = 80
            converted = (Decimal(int(amount_native)) * rate).to_integral_value(rounding=ROUND_CEILING)
        return int(converted)
