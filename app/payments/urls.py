"""
URL configuration for the payments app.

Routes:
    - POST initialize/ - Start a payment
    - GET|POST verify/<reference>/ - Re-check with the provider
    - GET status/<reference>/ - Stored status
    - POST callback/<gateway>/ - Provider callback, processed inline
    - POST refund/<reference>/ - Refund a payment
    - POST retry/<reference>/ - Retry a failed payment
    - GET gateways/ - Available gateways
    - GET history/ - Transaction history
    - POST webhook/<gateway>/ - Provider webhook, processed by Celery

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import payment_webhook

app_name = "payments"

urlpatterns = [
    path("initialize/", views.InitializePaymentView.as_view(), name="initialize"),
    path("verify/<str:reference>/", views.VerifyPaymentView.as_view(), name="verify"),
    path("status/<str:reference>/", views.PaymentStatusView.as_view(), name="status"),
    path("callback/<str:gateway>/", views.PaymentCallbackView.as_view(), name="callback"),
    path("refund/<str:reference>/", views.RefundView.as_view(), name="refund"),
    path("retry/<str:reference>/", views.RetryView.as_view(), name="retry"),
    path("gateways/", views.GatewayListView.as_view(), name="gateways"),
    path("history/", views.TransactionHistoryView.as_view(), name="history"),
    # Webhook endpoints
    path("webhook/<str:gateway>/", payment_webhook, name="webhook"),
]
