from __future__ import annotations

import json
import threading

import pytest

from fieldops.core.config import Settings
from fieldops.core.errors import ConfigurationError, PolicyTableError, UnknownResourceError
from fieldops.domain.policies import Operation, PolicyKind
from fieldops.services.rls.defaults import DEFAULT_POLICY_TABLE
from fieldops.services.rls.registry import RegistryHolder, build_registry, describe_policy
from fieldops.tests.utils.rls import make_registry


def test_resolve_registered_policy() -> None:
    registry = make_registry({"admin": {"contracts": "all_records"}})
    policy = registry.resolve("admin", "contracts", Operation.LIST)
    assert policy.kind is PolicyKind.ALL_RECORDS
    assert policy.is_default is False


def test_missing_assignment_defaults_to_deny_all() -> None:
    registry = make_registry({"admin": {"contracts": "all_records"}})
    policy = registry.resolve("technician", "contracts", Operation.LIST)
    assert policy.kind is PolicyKind.DENY_ALL
    assert policy.is_default is True


def test_unknown_role_fails_closed() -> None:
    registry = make_registry({"admin": {"contracts": "all_records"}})
    assert registry.resolve("contractor", "contracts").kind is PolicyKind.DENY_ALL


def test_unknown_resource_is_configuration_error() -> None:
    registry = make_registry({})
    with pytest.raises(UnknownResourceError):
        registry.resolve("admin", "spaceships")
    assert issubclass(UnknownResourceError, ConfigurationError)


def test_role_lookup_is_case_insensitive() -> None:
    registry = make_registry({"admin": {"contracts": "all_records"}})
    assert registry.resolve(" Admin ", "contracts").kind is PolicyKind.ALL_RECORDS


def test_read_write_split_resolves_per_operation_class() -> None:
    registry = make_registry(
        {"technician": {"technicians": {"read": "all_records", "write": "own_technician_record"}}},
        policies={
            "own_technician_record": {
                "kind": "own_records_only",
                "owner_field": "id",
                "identity_key": "technician_profile_id",
            }
        },
    )
    assert registry.resolve("technician", "technicians", Operation.GET).kind is PolicyKind.ALL_RECORDS
    write_policy = registry.resolve("technician", "technicians", Operation.UPDATE)
    assert write_policy.kind is PolicyKind.OWN_RECORDS_ONLY
    assert write_policy.identity_key == "technician_profile_id"


def test_read_only_assignment_leaves_writes_default_denied() -> None:
    registry = make_registry({"dispatcher": {"contracts": {"read": "all_records"}}})
    policy = registry.resolve("dispatcher", "contracts", Operation.CREATE)
    assert policy.kind is PolicyKind.DENY_ALL
    assert policy.is_default is True


def test_owner_field_must_exist_on_resource() -> None:
    with pytest.raises(PolicyTableError, match="owner_field"):
        make_registry(
            {"customer": {"inventory": "own_items"}},
            policies={"own_items": {"kind": "own_records_only", "owner_field": "customer_id"}},
        )


def test_assignment_to_unknown_resource_rejected() -> None:
    with pytest.raises(PolicyTableError, match="unknown resource"):
        make_registry({"admin": {"spaceships": "all_records"}})


def test_permissions_for_unknown_resource_rejected() -> None:
    with pytest.raises(PolicyTableError):
        make_registry({}, permissions={"spaceships": {"read": "admin"}})


def test_describe_lists_filters_for_every_role_and_resource() -> None:
    registry = build_registry(Settings(rls_policy_path=None))
    rows = registry.describe()
    keyed = {(row["role"], row["resource"], row["operation_class"]): row for row in rows}
    assert keyed[("customer", "invoices", "read")]["filter"] == "filter_by_customer_id_via_customer_profile_id"
    assert keyed[("customer", "users", "read")]["filter"] == "filter_by_id"
    assert keyed[("technician", "contracts", "read")]["default"] is True
    assert keyed[("dispatcher", "users", "write")]["filter"] == "minimum_role_manager"
    assert keyed[("admin", "inventory", "read")]["filter"] == "all_records"
    assert len(rows) == 5 * len(registry.catalog) * 2


def test_describe_policy_names_kinds() -> None:
    registry = make_registry({"dispatcher": {"inventory": "public_resource"}})
    assert describe_policy(registry.resolve("dispatcher", "inventory")) == "public_resource"


def test_build_registry_from_json_file(tmp_path) -> None:
    table = {"assignments": {"admin": {"contracts": "all_records"}}, "permissions": {}}
    path = tmp_path / "policies.json"
    path.write_text(json.dumps(table), encoding="utf-8")
    registry = build_registry(Settings(rls_policy_path=str(path)))
    assert registry.resolve("admin", "contracts").kind is PolicyKind.ALL_RECORDS
    assert registry.resolve("admin", "invoices").is_default is True


def test_holder_reload_swaps_whole_registry(tmp_path) -> None:
    holder = RegistryHolder(build_registry(Settings(rls_policy_path=None)))
    before = holder.current()
    path = tmp_path / "policies.json"
    path.write_text(json.dumps({"assignments": {"technician": {"contracts": "all_records"}}}), encoding="utf-8")

    holder.reload(Settings(rls_policy_path=str(path)))

    assert holder.generation == 2
    assert holder.current() is not before
    assert holder.current().resolve("technician", "contracts").kind is PolicyKind.ALL_RECORDS
    # The old snapshot is untouched for requests still holding it.
    assert before.resolve("technician", "contracts").is_default is True


def test_holder_keeps_registry_when_reload_fails(tmp_path) -> None:
    holder = RegistryHolder(build_registry(Settings(rls_policy_path=None)))
    before = holder.current()
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"assignments": {"admin": {"contracts": "no_such_policy"}}}), encoding="utf-8")

    with pytest.raises(PolicyTableError):
        holder.reload(Settings(rls_policy_path=str(path)))

    assert holder.current() is before
    assert holder.generation == 1


def test_concurrent_readers_see_complete_registries() -> None:
    first = make_registry({"admin": {"contracts": "all_records"}})
    second = make_registry(DEFAULT_POLICY_TABLE["assignments"], policies=DEFAULT_POLICY_TABLE["policies"])
    holder = RegistryHolder(first)
    seen: list[int] = []

    def reader() -> None:
        for _ in range(200):
            seen.append(len(holder.current()))

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for _ in range(50):
        holder.swap(second)
        holder.swap(first)
    for thread in threads:
        thread.join()
    assert set(seen) <= {len(first), len(second)}
