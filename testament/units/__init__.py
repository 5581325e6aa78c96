"""
Units module - Will units and the operations that act on them.

- Will units: lifecycle (create, check-in, dispute, execute) and status
- Shares: beneficiary add/update/remove with the 100% cap and single guardian
- Vault: locked and flexible custody deposits and flexible withdrawals
- Documents: content-addressed document references

All pure functions are re-exported here for convenience.
"""

# Will lifecycle
from .will import (
    Beneficiary,
    DocumentRef,
    WillTerms,
    WillState,
    PHASE_LOCKED,
    PHASE_DISPUTE,
    PHASE_OPEN,
    PHASE_EXECUTED,
    DEFAULT_CHECK_IN_PERIOD,
    DEFAULT_DISPUTE_PERIOD,
    load_will,
    to_state_dict,
    create_will_unit,
    calculate_deadline,
    calculate_dispute_end,
    calculate_phase,
    calculate_payouts,
    calculate_dust,
    authorize_execution,
    vault_balances,
    compute_create_will,
    compute_check_in,
    compute_start_dispute,
    compute_execute_will,
    will_status,
)

# Shares
from .shares import (
    validate_share,
    calculate_add,
    calculate_update,
    calculate_remove,
    total_shares,
    compute_add_beneficiary,
    compute_update_beneficiary,
    compute_remove_beneficiary,
)

# Vaults
from .vault import (
    validate_amount,
    compute_deposit,
    compute_withdraw_flexible,
)

# Documents
from .documents import (
    validate_content_hash,
    compute_add_document,
    compute_remove_document,
)
