"""Development settings for the equipment rental service.

This module extends the base settings with development specific
configuration such as debug mode and DEBUG level logs. Do not use these settings in production!
"""

from .base import *  # noqa: F401,F403

# Enable debug mode for development
DEBUG = True

# Allow all hosts in development
ALLOWED_HOSTS = ['*']

# Verbose logs while developing
LOG_LEVEL = "DEBUG"
LOGGING["handlers"]["console"]["level"] = LOG_LEVEL  # noqa: F405
LOGGING["loggers"]["apps"]["level"] = LOG_LEVEL  # noqa: F405
