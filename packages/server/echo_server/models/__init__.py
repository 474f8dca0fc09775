# SQLModel definitions: imported here to ensure metadata is populated for create_all.
from .base import IdMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .membership import OrganizationMember  # noqa: F401
from .invitation import Invitation  # noqa: F401
from .api_key import ApiKey  # noqa: F401
