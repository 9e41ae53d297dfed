"""Bookings app package.

This app encapsulates single-renter bookings: the booking model and its
state machine, the availability index shared with group bookings, hold
and payment-window expiry, and settlement of verified payments. Conflict
checks and inserts run under the equipment row lock.
"""
