"""Payments app package.

One Payment row per payment attempt against the hosted-checkout gateway.
``PaymentVerifier`` opens checkout sessions and verifies references; a
terminal verification is applied exactly once and handed to the booking
or group booking that owns the attempt.
"""
