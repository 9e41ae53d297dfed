from django.urls import path  # type: ignore

from .views import InitializePaymentView, PaymentStatusView, PaymentWebhookView, VerifyPaymentView

urlpatterns = [
    path("initialize/", InitializePaymentView.as_view(), name="payment-initialize"),
    path("verify/<str:reference>/", VerifyPaymentView.as_view(), name="payment-verify"),
    path("status/<str:reference>/", PaymentStatusView.as_view(), name="payment-status"),
    path("webhook/", PaymentWebhookView.as_view(), name="payment-webhook"),
]
