"""Users app package.

Defines the custom user model of the marketplace. Users log in with
their email and carry one of three roles: renters book equipment, owners
list equipment and confirm group bookings, admins see everything. Use
``apps.users.models.CustomUser`` as the AUTH_USER_MODEL throughout the
project.
"""
