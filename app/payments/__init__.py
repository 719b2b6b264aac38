"""
Payments app: one contract over many payment providers.

This app handles:
- Gateway adapters (PayFast, PayStack, PayPal, Stripe, Ozow, Zapper,
  crypto, EFT, VodaPay, SnapScan) behind a registry
- The Transaction lifecycle state machine
- Webhook intake with signature verification
- Recurring subscription billing
- PaymentCompleted / PaymentFailed events

Usage:
    from payments.services import PaymentOrchestrator
    from payments.gateways.types import CustomerDetails, PaymentRequest

    result = PaymentOrchestrator().initialize(
        "payfast",
        PaymentRequest(amount=Decimal("100.00"), description="Order 42",
                       customer=CustomerDetails(email="a@b.co")),
    )
    if result:
        redirect_to(result.data.init_result.payment_url)
"""
