from __future__ import annotations

from typing import Any

from fieldops.services.rls.table import PolicyTable, parse_policy_table


# Built-in policy table for the field-service roles. Administrative roles are
# plain all_records assignments; nothing bypasses the table.
DEFAULT_POLICY_TABLE: dict[str, Any] = {
    "policies": {
        "own_customer_record": {
            "kind": "own_records_only",
            "owner_field": "id",
            "identity_key": "customer_profile_id",
        },
        "own_technician_record": {
            "kind": "own_records_only",
            "owner_field": "id",
            "identity_key": "technician_profile_id",
        },
        "own_work_orders_only": {
            "kind": "own_records_only",
            "owner_field": "customer_id",
            "identity_key": "customer_profile_id",
        },
        "assigned_work_orders_only": {
            "kind": "own_records_only",
            "owner_field": "assigned_technician_id",
            "identity_key": "technician_profile_id",
        },
        "own_invoices_only": {
            "kind": "own_records_only",
            "owner_field": "customer_id",
            "identity_key": "customer_profile_id",
        },
        "own_contracts_only": {
            "kind": "own_records_only",
            "owner_field": "customer_id",
            "identity_key": "customer_profile_id",
        },
        "own_user_record": {
            "kind": "own_records_only",
            "owner_field": "id",
        },
        "manager_or_above": {"kind": "minimum_role", "minimum_role": "manager"},
        "admin_only": {"kind": "minimum_role", "minimum_role": "admin"},
    },
    "assignments": {
        "customer": {
            "customers": "own_customer_record",
            "work_orders": "own_work_orders_only",
            "invoices": "own_invoices_only",
            "contracts": "own_contracts_only",
            "users": "own_user_record",
            "roles": {"read": "public_resource"},
        },
        "technician": {
            "customers": {"read": "all_records"},
            "technicians": {"read": "all_records", "write": "own_technician_record"},
            "work_orders": "assigned_work_orders_only",
            "inventory": "public_resource",
            "users": {"read": "all_records", "write": "own_user_record"},
            "roles": {"read": "public_resource"},
        },
        "dispatcher": {
            "customers": "all_records",
            "technicians": "all_records",
            "work_orders": "all_records",
            "invoices": "all_records",
            "contracts": {"read": "all_records"},
            "inventory": "public_resource",
            "users": {"read": "all_records", "write": "manager_or_above"},
            "roles": {"read": "public_resource"},
        },
        "manager": {
            "customers": "all_records",
            "technicians": "all_records",
            "work_orders": "all_records",
            "invoices": "all_records",
            "contracts": "all_records",
            "inventory": "public_resource",
            "users": "all_records",
            "roles": {"read": "public_resource", "write": "admin_only"},
        },
        "admin": {
            "customers": "all_records",
            "technicians": "all_records",
            "work_orders": "all_records",
            "invoices": "all_records",
            "contracts": "all_records",
            "inventory": "all_records",
            "users": "all_records",
            "roles": {"read": "all_records", "write": "admin_only"},
        },
    },
    "permissions": {
        "customers": {"read": "customer", "create": "dispatcher", "update": "customer", "delete": "manager"},
        "technicians": {"read": "technician", "create": "manager", "update": "technician", "delete": "manager"},
        "work_orders": {"read": "customer", "create": "customer", "update": "technician", "delete": "manager"},
        "invoices": {"read": "customer", "create": "dispatcher", "update": "dispatcher", "delete": "manager"},
        "contracts": {"read": "customer", "create": "manager", "update": "manager", "delete": "manager"},
        "inventory": {"read": "technician", "create": "dispatcher", "update": "dispatcher", "delete": "manager"},
        "users": {"read": "customer", "create": "manager", "update": "customer", "delete": "admin"},
        "roles": {"read": "customer", "create": "admin", "update": "admin", "delete": "admin"},
    },
}


def default_policy_table() -> PolicyTable:
    return parse_policy_table(DEFAULT_POLICY_TABLE)
