"""Group bookings app package.

A group booking is one reservation funded by several participants, each
paying their own share through a separate payment attempt. The group
turns ``ready`` once every committed share is verified, and the equipment
owner then confirms it.
"""
