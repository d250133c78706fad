from app.schemas.auth import LoginRequest, TokenResponse, MeResponse
from app.schemas.contracts import (
    ContractCreateRequest,
    ContractUpdateRequest,
    ContractResponse,
    ContractListResponse,
    SigningLinkResponse,
    PublicContractResponse,
    SignatureResponse,
    WorkflowProgressResponse,
)
from app.schemas.payments import PaymentCreateRequest, MarkPaidRequest, PaymentResponse, PaymentListResponse
from app.schemas.audit import AuditLogResponse, AuditLogListResponse
from app.schemas.notifications import NotificationResponse, NotificationListResponse
from app.schemas.pagination import PageMeta, page_meta
