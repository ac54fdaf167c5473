from typing import Optional

from showpass.core import config
from showpass.core.errors import PayoutError
from showpass.services.payouts.base import PayoutProvider


def build_payout_provider(name: Optional[str] = None) -> PayoutProvider:
    name = (name or config.settings.PAYOUT_PROVIDER).lower()
    if name in ("razorpayx", "razorpay"):
        from showpass.services.payouts.razorpayx import RazorpayXPayouts

        return RazorpayXPayouts(config.razorpayx_config())
    if name == "cashfree":
        from showpass.services.payouts.cashfree_payouts import CashfreePayouts

        return CashfreePayouts(config.cashfree_payout_config())
    raise PayoutError(code="unknown_provider", message=f"Unsupported payout provider: {name}")
