# Make `from leadsync.models import Lead, Trigger, AutomationLog` work
from .orm import Lead, Trigger, AutomationLog  # re-export
