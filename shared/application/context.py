"""
Request Context

The authenticated principal of one request, passed explicitly into every
core operation instead of being read from ambient state. Views build it
once with RequestContext.from_request().
"""

from dataclasses import dataclass, field
from uuid import uuid4


@dataclass(frozen=True)
class RequestContext:
    user_id: int | None
    role: str
    email: str = ''
    request_id: str = field(default_factory=lambda: uuid4().hex)

    @classmethod
    def from_request(cls, request) -> 'RequestContext':
        user = request.user
        request_id = request.META.get('HTTP_X_REQUEST_ID') or uuid4().hex
        if not user or not user.is_authenticated:
            return cls(user_id=None, role='anonymous', request_id=request_id)

        role = getattr(user, 'role', 'renter')
        if getattr(user, 'is_superuser', False) or getattr(user, 'is_staff', False):
            role = 'admin'
        return cls(user_id=user.pk, role=role, email=user.email, request_id=request_id)

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'
