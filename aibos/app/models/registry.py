"""Import every model module so all mappers are registered on ``Base``.

Anything that configures mappers without going through the API app
(Alembic, Celery workers, scripts, tests) imports this first.
"""

from aibos.app.core.database import Base
from aibos.app.models import (  # noqa: F401
    account,
    attachment,
    audit,
    banking,
    bill,
    customer,
    idempotency,
    invoice,
    journal,
    payment,
    period,
    subscription,
    supplier,
    tax,
    tenant,
    user,
)

metadata = Base.metadata
