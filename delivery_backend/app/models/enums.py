"""
User roles enumeration.

Defines the actor types of the delivery platform.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operator who observes and intervenes
        SENDER: Creates deliveries and owns them until completion
        DRIVER: Accepts and fulfills deliveries
    """
    ADMIN = "ADMIN"
    SENDER = "SENDER"
    DRIVER = "DRIVER"
