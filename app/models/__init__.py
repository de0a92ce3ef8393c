from app.models.party import Agency, User, Property
from app.models.lease_contract import LeaseContract
from app.models.lifecycle_event import ContractLifecycleEvent
from app.models.clause_history import ContractClauseHistory

__all__ = [
    "Agency",
    "User",
    "Property",
    "LeaseContract",
    "ContractLifecycleEvent",
    "ContractClauseHistory",
]
