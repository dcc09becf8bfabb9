from donation_gateway.gateways.base import CheckoutForm, Correlation, GatewayAdapter, GatewayCredentials
from donation_gateway.gateways.ecpay import EcpayAdapter
from donation_gateway.gateways.newebpay import NewebpayAdapter
from donation_gateway.gateways.registry import GatewayRegistry
from donation_gateway.gateways.result import Result

__all__ = [
    "CheckoutForm",
    "Correlation",
    "GatewayAdapter",
    "GatewayCredentials",
    "EcpayAdapter",
    "NewebpayAdapter",
    "GatewayRegistry",
    "Result",
]
