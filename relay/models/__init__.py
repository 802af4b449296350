from relay.models.config_entry import ConfigEntry
from relay.models.conversation_message import ConversationMessage
from relay.models.event_log import EventLog
from relay.models.identity_mapping import IdentityMapping
from relay.models.scheduled_job import ScheduledJob

__all__ = [
    "ConfigEntry",
    "ConversationMessage",
    "EventLog",
    "IdentityMapping",
    "ScheduledJob",
]
