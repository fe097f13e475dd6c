"""
End-to-end demo — quote, deposit, settlement against a running API.

Usage:
    python scripts/simulate_flow.py [amount] [currency]

Requests a quote, then calls the dev simulate-deposit endpoint so the
backend settles it with an instant payout. Requires APP_ENV=development.
"""

import asyncio
import json
import os
import sys

import httpx

API_URL = os.environ.get("FLOATPAY_API_URL", "http://localhost:8000")


async def main(amount: str, currency: str):
    async with httpx.AsyncClient(base_url=API_URL, timeout=30) as client:
        print(f"Requesting quote for {amount} -> {currency}...")
        resp = await client.post("/payment/quote", json={"amount": amount, "currency": currency})
        if resp.status_code != 200:
            print(f"Quote failed ({resp.status_code}): {resp.json().get('message')}")
            return
        quote = resp.json()
        print(json.dumps(quote, indent=2))
        print(f"\nSend {quote['crypto_amount']} {quote['crypto_currency']} to {quote['deposit_address']}")

        print("\nSimulating deposit...")
        resp = await client.post("/dev/simulate-deposit", json={"quote_id": quote["id"]})
        print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    amount = sys.argv[1] if len(sys.argv) > 1 else "500"
    currency = sys.argv[2] if len(sys.argv) > 2 else "USDC"
    asyncio.run(main(amount, currency))
