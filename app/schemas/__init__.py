from app.schemas.contracts import ContractFields, ContractDraftFields, ContractCreateRequest, ContractResponse, SignRequest
from app.schemas.contracts import AgreementRequest, InspectionLinkRequest, TerminationNoticeRequest
from app.schemas.contracts import LifecycleEventResponse, ClauseHistoryResponse, ImmutabilityResponse
