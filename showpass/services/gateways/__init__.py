import logging

from showpass.core import config
from showpass.core.errors import GatewayError
from showpass.services.gateways.base import PaymentGateway

logger = logging.getLogger(__name__)

GATEWAYS = ("razorpay", "cashfree", "ccavenue")

_instances = {}


def build_gateway(name: str) -> PaymentGateway:
    """Return the configured adapter for ``name``, built once per process."""
    name = (name or config.settings.PAYMENT_GATEWAY).lower()
    if name in _instances:
        return _instances[name]

    if name == "razorpay":
        from showpass.services.gateways.razorpay_gateway import RazorpayGateway

        gateway = RazorpayGateway(config.razorpay_config())
    elif name == "cashfree":
        from showpass.services.gateways.cashfree_gateway import CashfreeGateway

        gateway = CashfreeGateway(config.cashfree_config())
    elif name == "ccavenue":
        from showpass.services.gateways.ccavenue_gateway import CCAvenueGateway

        gateway = CCAvenueGateway(config.ccavenue_config())
    else:
        raise GatewayError(code="unknown_gateway", message=f"Unsupported payment gateway: {name}", gateway=name)

    _instances[name] = gateway
    logger.info("Payment gateway %s initialised", name, extra={"gateway": name})
    return gateway
