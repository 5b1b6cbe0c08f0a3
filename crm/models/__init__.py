# Models package — import all models here so Alembic can discover them.

from crm.models.lead import Lead  # noqa: F401
from crm.models.activity import LeadActivity  # noqa: F401
from crm.models.setting import Setting  # noqa: F401
from crm.models.email_log import EmailLog  # noqa: F401
from crm.models.business_context import BusinessContext  # noqa: F401
from crm.models.meta_connection import MetaConnection  # noqa: F401
