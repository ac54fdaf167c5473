"""Human-shareable identifiers for bookings, tickets, purchases and orders."""
import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def make_reference(prefix: str, random_length: int = 6) -> str:
    """``PREFIX`` + base36 millisecond timestamp + random base36 suffix, upper case."""
    return f"{prefix}{_base36(int(time.time() * 1000))}{_random_suffix(random_length)}".upper()


def booking_reference() -> str:
    return make_reference("BK")


def ticket_number() -> str:
    return make_reference("TK")


def video_purchase_reference() -> str:
    return make_reference("VPR")


def vendor_subscription_reference() -> str:
    return make_reference("VND", 8)


def gateway_order_id(gateway: str) -> str:
    """Merchant-side order ids for gateways that take one from us."""
    prefix = {"cashfree": "ORD", "ccavenue": "CC"}.get(gateway, "ORD")
    return make_reference(prefix, 8)
