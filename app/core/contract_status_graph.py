# app/core/contract_status_graph.py
from app.core.errors import InvalidStateError
from app.models.enums import ContractStatus

# Forward edges only. The admin rollback to draft is an audited override and
# deliberately absent from this graph.
ALLOWED_STATUS_TRANSITIONS = {
    ContractStatus.draft: {
        ContractStatus.pending_client_signature,
    },

    ContractStatus.pending_client_signature: {
        ContractStatus.client_signed,
    },

    ContractStatus.client_signed: {
        ContractStatus.employee_approved,
    },

    ContractStatus.employee_approved: {
        ContractStatus.fully_executed,
    },

    ContractStatus.fully_executed: {
        ContractStatus.archived,
    },

    ContractStatus.archived: set(),
}

TERMINAL_STATUSES = {ContractStatus.archived}


def assert_transition(current: str, target: ContractStatus) -> ContractStatus:
    cur = ContractStatus(current)
    if target not in ALLOWED_STATUS_TRANSITIONS[cur]:
        raise InvalidStateError(
            f"Contract in status {cur.value} cannot move to {target.value}."
        )
    return cur
