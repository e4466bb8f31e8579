from agentcore.models.business_rule import BusinessRule, RuleExecution
from agentcore.models.conversation import Conversation
from agentcore.models.customer import Customer, CustomerAttribute
from agentcore.models.daily_stats import AgentDailyStats
from agentcore.models.escalation import Escalation
from agentcore.models.message import Message
from agentcore.models.queued_job import QueuedJob
from agentcore.models.sales_record import SalesRecord

__all__ = [
    "Customer",
    "CustomerAttribute",
    "Conversation",
    "Message",
    "BusinessRule",
    "RuleExecution",
    "Escalation",
    "QueuedJob",
    "SalesRecord",
    "AgentDailyStats",
]
