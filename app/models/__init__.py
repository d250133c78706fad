# Import every model so Base.metadata is complete (tests, alembic autogenerate).
from app.models.branch import Branch  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.contract import Contract  # noqa: F401
from app.models.signature import Signature  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.notification import Notification  # noqa: F401
