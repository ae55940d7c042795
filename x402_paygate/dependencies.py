from fastapi import Request

from x402_paygate.services.payment_service import PaymentGate


def get_payment_gate(request: Request) -> PaymentGate:
    """Dependency for endpoints guarded by x402 payment."""
    return request.app.state.payment_gate
