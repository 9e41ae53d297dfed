"""Equipment app package.

Holds the equipment rows that bookings and group bookings reference.
Catalog management (categories, images, technical details) happens
elsewhere; the booking core only reads the owner, the daily price and
the availability flag.
"""
