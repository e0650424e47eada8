# (c) Copyright Datacraft, 2026
"""Tests for the capability resolver."""
import dataclasses
from datetime import datetime, timezone

import pytest

from capgate.core.features.capabilities.engine import (
    CandidateState, CapabilityResolver, RejectionCode,
    check_permission, check_permissions, has_capability,
)
from capgate.core.features.capabilities.field_mask import FieldMask
from capgate.core.features.capabilities.models import (
    AccessContext, Capability, CapabilityAction, CapabilityModule, Condition, ConditionGroup,
    ConditionOperator, CombineWith,
    ContextRestrictions, FieldMode, FieldPermission, RecordScope, ScopeType,
    TimeOfDay, TimeRestrictions, User, CapabilityResolutionError,
)


def department_approval():
    return Capability(
        module="expense",
        action="approve",
        scope=RecordScope(type=ScopeType.DEPARTMENT_ONLY),
    )


def with_caps(user, *capabilities):
    return dataclasses.replace(user, capabilities=tuple(capabilities))


# End-to-end decisions.

def test_department_scope_allows(resolver, ops_user, context):
    user = with_caps(ops_user, department_approval())
    decision = resolver.evaluate(
        user.capabilities, "expense", "approve", context,
        user=user, record={"department": "ops"},
    )
    assert decision.allowed is True
    assert decision.field_mask.is_unrestricted is True
    assert decision.rejection_reason is None

def test_department_scope_denies_other_department(resolver, ops_user, context):
    user = with_caps(ops_user, department_approval())
    decision = resolver.evaluate(
        user.capabilities, "expense", "approve", context,
        user=user, record={"department": "sales"},
    )
    assert decision.allowed is False
    assert decision.rejection_code == RejectionCode.OUT_OF_SCOPE
    assert "scope" in decision.rejection_reason

def test_mfa_required(resolver, ops_user, now):
    capability = Capability(
        module="user_management",
        action="delete",
        context_restrictions=ContextRestrictions(require_mfa=True),
    )
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(
        user.capabilities, "user_management", "delete",
        AccessContext(now=now, mfa_satisfied=False), user=user,
    )
    assert decision.allowed is False
    assert decision.rejection_code == RejectionCode.CONTEXT_RESTRICTED
    assert "MFA" in decision.rejection_reason

def test_or_conditions(resolver, ops_user, context):
    capability = Capability(
        module="expense",
        action="review",
        conditions=ConditionGroup(
            conditions=(
                Condition("amount", ConditionOperator.GREATER_THAN, "1000"),
                Condition("flagged", ConditionOperator.EQUALS, "true"),
            ),
            combine_with=CombineWith.OR,
        ),
    )
    user = with_caps(ops_user, capability)
    allowed = resolver.evaluate(
        user.capabilities, "expense", "review", context,
        user=user, record={"amount": 1500, "flagged": False},
    )
    denied = resolver.evaluate(
        user.capabilities, "expense", "review", context,
        user=user, record={"amount": 100, "flagged": False},
    )
    assert allowed.allowed is True
    assert denied.allowed is False
    assert denied.rejection_code == RejectionCode.CONDITION_FAILED
    assert denied.rejection_reason == "Conditions not met"
    assert denied.failed_conditions == ("amount > 1000", "flagged == true")

def test_field_whitelists_merge(resolver, ops_user, context):
    user = with_caps(
        ops_user,
        Capability(
            module="expense", action="read",
            field_permissions=(FieldPermission("expense", "read", FieldMode.WHITELIST, ("amount", "status")),),
        ),
        Capability(
            module="expense", action="read",
            field_permissions=(FieldPermission("expense", "read", FieldMode.WHITELIST, ("status", "notes")),),
        ),
    )
    decision = resolver.evaluate(user.capabilities, "expense", "read", context, user=user)
    assert decision.allowed is True
    assert decision.field_mask == FieldMask.only({"amount", "status", "notes"})
    assert len(decision.effective_capabilities) == 2


def test_no_grant(resolver, ops_user, context):
    user = with_caps(ops_user, department_approval())
    decision = resolver.evaluate(user.capabilities, "expense", "delete", context, user=user)
    assert decision.allowed is False
    assert decision.rejection_code == RejectionCode.NO_GRANT
    assert "expense.delete" in decision.rejection_reason
    assert decision.trace == ()

def test_vacuous_capability(resolver, ops_user):
    user = with_caps(ops_user, Capability(module="reports", action="export"))
    assert resolver.evaluate(user.capabilities, "reports", "export", user=user).allowed is True
    assert resolver.evaluate(
        user.capabilities, "reports", "export", AccessContext(),
        user=user, record={"anything": 1},
    ).allowed is True

def test_missing_capability_list_raises(resolver, ops_user):
    with pytest.raises(CapabilityResolutionError):
        resolver.evaluate(None, "expense", "read", user=ops_user)

def test_enum_module_and_action(resolver, ops_user, context):
    user = with_caps(ops_user, Capability(module="reports", action="read"))
    decision = resolver.evaluate(
        user.capabilities, CapabilityModule.REPORTS, CapabilityAction.READ, context, user=user,
    )
    assert decision.allowed is True


def test_expired_capability(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="read",
        expires_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(user.capabilities, "expense", "read", context, user=user)
    assert decision.allowed is False
    assert decision.rejection_code == RejectionCode.EXPIRED
    assert decision.rejection_reason == "Permission has expired"

def test_future_expiry(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="read",
        expires_at=datetime(2027, 1, 1, tzinfo=timezone.utc),
    )
    user = with_caps(ops_user, capability)
    assert resolver.evaluate(user.capabilities, "expense", "read", context, user=user).allowed is True

def test_outside_time_window(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="read",
        time_restrictions=TimeRestrictions(time_of_day=TimeOfDay("22:00", "02:00")),
    )
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(user.capabilities, "expense", "read", context, user=user)
    assert decision.rejection_code == RejectionCode.OUTSIDE_TIME_WINDOW
    assert decision.failed_conditions == ("Only allowed between 22:00 - 02:00",)


# Without a record, scope and condition gates pass.

def test_scope_skipped(resolver, ops_user, context):
    user = with_caps(ops_user, Capability(module="expense", action="create", scope=RecordScope(ScopeType.OWN_ONLY)))
    assert resolver.evaluate(user.capabilities, "expense", "create", context, user=user).allowed is True

def test_conditions_skipped(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="create",
        conditions=ConditionGroup(conditions=(Condition("amount", ConditionOperator.LESS_THAN, "10"),)),
    )
    user = with_caps(ops_user, capability)
    assert resolver.evaluate(user.capabilities, "expense", "create", context, user=user).allowed is True

def test_record_from_context(resolver, ops_user, context):
    user = with_caps(ops_user, department_approval())
    ctx = dataclasses.replace(context, record={"department": "sales"})
    assert resolver.evaluate(user.capabilities, "expense", "approve", ctx, user=user).allowed is False

def test_object_record(resolver, ops_user, context):
    @dataclasses.dataclass
    class Expense:
        department: str

    user = with_caps(ops_user, department_approval())
    decision = resolver.evaluate(
        user.capabilities, "expense", "approve", context, user=user, record=Expense("ops"),
    )
    assert decision.allowed is True


def test_any_effective_candidate_allows(resolver, ops_user, context):
    user = with_caps(
        ops_user,
        department_approval(),
        Capability(module="expense", action="approve", scope=RecordScope(ScopeType.OWN_ONLY)),
    )
    decision = resolver.evaluate(
        user.capabilities, "expense", "approve", context,
        user=user, record={"department": "sales", "created_by": "u-1"},
    )
    assert decision.allowed is True
    assert [t.state for t in decision.trace] == [CandidateState.REJECTED, CandidateState.EFFECTIVE]

def test_adding_capabilities_never_revokes(resolver, ops_user, context):
    base = Capability(module="expense", action="read")
    extras = [
        Capability(module="expense", action="read", scope=RecordScope(ScopeType.OWN_ONLY)),
        Capability(module="expense", action="read", context_restrictions=ContextRestrictions(dual_control=True)),
        Capability(module="expense", action="read", expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc)),
        Capability(module="expense", action="read", scope=RecordScope(ScopeType.CUSTOM, "")),
    ]
    record = {"created_by": "u-2"}
    capabilities = [base]
    for extra in extras:
        capabilities.append(extra)
        decision = resolver.evaluate(capabilities, "expense", "read", context, user=ops_user, record=record)
        assert decision.allowed is True

def test_furthest_candidate_explains_denial(resolver, ops_user, context):
    user = with_caps(
        ops_user,
        Capability(
            module="expense", action="approve",
            time_restrictions=TimeRestrictions(days_of_week=frozenset({0})),
        ),
        Capability(
            module="expense", action="approve",
            context_restrictions=ContextRestrictions(require_reason=True),
        ),
    )
    decision = resolver.evaluate(user.capabilities, "expense", "approve", context, user=user)
    assert decision.rejection_code == RejectionCode.CONTEXT_RESTRICTED
    assert decision.rejection_reason == "Justification required for this action"

def test_condition_error_message(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="approve",
        conditions=ConditionGroup(
            conditions=(Condition("amount", ConditionOperator.LESS_THAN_OR_EQUAL, "5000"),),
            error_message="Amount exceeds your approval limit",
        ),
    )
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(
        user.capabilities, "expense", "approve", context, user=user, record={"amount": 9000},
    )
    assert decision.rejection_reason == "Amount exceeds your approval limit"

def test_field_mask_from_effective_only(resolver, ops_user, context):
    user = with_caps(
        ops_user,
        Capability(
            module="expense", action="read",
            field_permissions=(FieldPermission("expense", "read", FieldMode.WHITELIST, ("amount",)),),
        ),
        Capability(
            module="expense", action="read",
            scope=RecordScope(ScopeType.OWN_ONLY),
            field_permissions=(FieldPermission("expense", "read", FieldMode.WHITELIST, ("notes",)),),
        ),
    )
    decision = resolver.evaluate(
        user.capabilities, "expense", "read", context, user=user, record={"created_by": "u-2"},
    )
    assert decision.field_mask == FieldMask.only({"amount"})

def test_approval_requirement_is_reported(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="approve",
        context_restrictions=ContextRestrictions(require_approval=True, approval_from_role=("manager",)),
    )
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(user.capabilities, "expense", "approve", context, user=user)
    assert decision.requires_approval is True
    assert decision.approval_from == ("manager",)


# Malformed candidates are rejected, never granted.

def test_malformed_only_candidate(resolver, ops_user, context):
    capability = Capability(module="expense", action="read", scope=RecordScope(ScopeType.CUSTOM, None))
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(user.capabilities, "expense", "read", context, user=user)
    assert decision.allowed is False
    assert decision.rejection_code == RejectionCode.MALFORMED

def test_unknown_operator_from_storage(resolver, ops_user, context):
    capability = Capability.from_dict({
        "module": "expense",
        "action": "read",
        "conditions": {"conditions": [{"field": "amount", "operator": "~=", "value": "1"}]},
    })
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(user.capabilities, "expense", "read", context, user=user)
    assert decision.rejection_code == RejectionCode.MALFORMED

def test_field_rule_on_non_field_action(resolver, ops_user, context):
    capability = Capability(
        module="expense", action="approve",
        field_permissions=(FieldPermission("expense", "approve", FieldMode.WHITELIST, ("amount",)),),
    )
    user = with_caps(ops_user, capability)
    decision = resolver.evaluate(user.capabilities, "expense", "approve", context, user=user)
    assert decision.rejection_code == RejectionCode.MALFORMED

@pytest.mark.parametrize("stored", [
    {"context_restrictions": {"ip_whitelist": [10]}},
    {"conditions": {"conditions": [{"field": 5, "operator": "==", "value": "1"}]}},
    {"time_restrictions": {"timezone": 5}},
    {"time_restrictions": {"time_of_day": {"start": 9, "end": "17:00"}}},
    {"context_restrictions": {"approval_from_role": [None], "require_approval": True}},
])
def test_wrongly_typed_candidate_does_not_abort(resolver, ops_user, context, stored):
    """A stored field of the wrong type rejects its own candidate only."""
    malformed = Capability.from_dict({"module": "expense", "action": "read", **stored})
    user = with_caps(ops_user, malformed, Capability(module="expense", action="read"))
    decision = resolver.evaluate(user.capabilities, "expense", "read", context, user=user)
    assert decision.allowed is True
    assert [t.state for t in decision.trace] == [CandidateState.REJECTED, CandidateState.EFFECTIVE]

    alone = with_caps(ops_user, malformed)
    decision = resolver.evaluate(alone.capabilities, "expense", "read", context, user=alone)
    assert decision.allowed is False
    assert decision.rejection_code == RejectionCode.MALFORMED


def test_clock_used_once_per_request(ops_user, now):
    calls = []

    def clock():
        calls.append(1)
        return now

    resolver = CapabilityResolver(clock=clock)
    user = with_caps(ops_user, *[Capability(module="expense", action="read") for _ in range(3)])
    resolver.evaluate(user.capabilities, "expense", "read", user=user)
    assert len(calls) == 1

def test_batch_shares_one_clock_reading(ops_user, now):
    calls = []

    def clock():
        calls.append(1)
        return now

    resolver = CapabilityResolver(clock=clock)
    user = with_caps(ops_user, Capability(module="expense", action="read"))
    decisions = resolver.evaluate_many(user, [("expense", "read"), ("expense", "delete"), ("reports", "read")])
    assert len(calls) == 1
    assert {key: d.allowed for key, d in decisions.items()} == {
        "expense.read": True,
        "expense.delete": False,
        "reports.read": False,
    }

def test_bypass_roles(now):
    resolver = CapabilityResolver(bypass_roles=["super_admin"])
    admin = User(id="root", role="super_admin")
    assert resolver.evaluate(admin.capabilities, "expense", "delete", AccessContext(now=now), user=admin).allowed is True
    enforced = AccessContext(now=now, enforce_granular=True)
    decision = resolver.evaluate(admin.capabilities, "expense", "delete", enforced, user=admin)
    assert decision.rejection_code == RejectionCode.NO_GRANT

def test_default_timezone(ops_user):
    resolver = CapabilityResolver(default_timezone="Asia/Kolkata")
    capability = Capability(
        module="expense", action="read",
        time_restrictions=TimeRestrictions(time_of_day=TimeOfDay("09:00", "17:00")),
    )
    user = with_caps(ops_user, capability)
    # 04:00 UTC is 09:30 in India
    early = AccessContext(now=datetime(2026, 1, 14, 4, 0, tzinfo=timezone.utc))
    assert resolver.evaluate(user.capabilities, "expense", "read", early, user=user).allowed is True


def test_check_permission(ops_user, context):
    user = with_caps(ops_user, department_approval())
    assert check_permission(user, "expense", "approve", context, {"department": "ops"}).allowed is True

def test_has_capability(ops_user, context):
    user = with_caps(ops_user, department_approval())
    assert has_capability(user, "expense", "approve", context) is True
    assert has_capability(user, "expense", "delete", context) is False
    assert has_capability(None, "expense", "approve", context) is False

def test_check_permissions(ops_user, context):
    user = with_caps(ops_user, Capability(module="reports", action="read"))
    results = check_permissions(user, [("reports", "read"), ("reports", "export")], context)
    assert results["reports.read"].allowed is True
    assert results["reports.export"].allowed is False

def test_decision_to_dict(resolver, ops_user, context):
    decision = resolver.evaluate(ops_user.capabilities, "expense", "read", context, user=ops_user)
    data = decision.to_dict()
    assert data["allowed"] is False
    assert data["rejection_code"] == "no_grant"
    assert data["field_mask"] == {"kind": "all_fields", "fields": []}
    assert bool(decision) is False


def test_dict_round_trip():
    capability = Capability(
        module="expense",
        action="approve",
        scope=RecordScope(type=ScopeType.CUSTOM, custom_filter="user.id == record.created_by"),
        time_restrictions=TimeRestrictions(
            days_of_week=frozenset({1, 2, 3}),
            time_of_day=TimeOfDay("09:00", "17:00"),
            timezone="Asia/Kolkata",
        ),
        conditions=ConditionGroup(
            conditions=(Condition("status", ConditionOperator.IN, ("open", "pending")),),
            combine_with=CombineWith.OR,
        ),
        context_restrictions=ContextRestrictions(require_mfa=True, device_types=frozenset({"desktop"})),
        field_permissions=(FieldPermission("expense", "read", FieldMode.BLACKLIST, ("notes",)),),
        expires_at=datetime(2027, 1, 1, tzinfo=timezone.utc),
    )
    assert Capability.from_dict(capability.to_dict()) == capability
    assert capability.key == "expense.approve"
    assert capability.is_unrestricted is False
