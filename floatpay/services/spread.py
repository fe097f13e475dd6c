"""
Spread calculator — risk-adjusted fee and crypto amount arithmetic.

Pure functions, no I/O. All amounts are ``Decimal``.
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext

BASE_FEE = Decimal("0.01")              # 1%
RISK_PREMIUM_FACTOR = Decimal("0.05")   # up to 5% extra at risk 1.0

# On-chain precision per asset
ASSET_DECIMALS = {
    "ETH": 18,
    "USDC": 6,
}


def calculate_spread(risk_score: Decimal) -> Decimal:
    """spread = base fee + risk score * risk premium factor."""
    return BASE_FEE + Decimal(str(risk_score)) * RISK_PREMIUM_FACTOR


def calculate_crypto_amount(
    fiat_amount: Decimal,
    exchange_rate: Decimal,
    spread: Decimal,
    currency: str,
) -> Decimal:
    """
    Crypto owed for *fiat_amount*: (fiat / rate) * (1 + spread).

    Quantized to the asset's on-chain precision so the stored value can be
    recomputed exactly from the other quote fields.
    """
    places = ASSET_DECIMALS.get(currency, 18)
    with localcontext() as ctx:
        ctx.prec = 50
        raw = (fiat_amount / exchange_rate) * (Decimal("1") + spread)
        return raw.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
