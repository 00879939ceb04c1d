from __future__ import annotations

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from smart_import.importer.pipeline import AuditFilters, ExecutionEngine, ImportSessionService, SchemaCatalog, execution
from smart_import.models import SchemaDefinition, db
from smart_import.models.importer import AuditActionType, ImportAuditLog, ImportSession, ImportSessionStatus

MAPPING = {"SKU": "sku", "Product Name": "name", "Price": "price"}


def _rows(*skus):
    return [{"SKU": sku, "Product Name": f"Product {index}", "Price": "2.50"} for index, sku in enumerate(skus, 1)]


def _audit_entries(session_id):
    return (
        db.session.query(ImportAuditLog)
        .filter(ImportAuditLog.session_id == session_id)
        .order_by(ImportAuditLog.executed_at.asc(), ImportAuditLog.id.asc())
        .all()
    )


def _product_count():
    return db.session.execute(text("SELECT COUNT(*) FROM products")).scalar_one()


def test_execute_inserts_rows_with_tenant_and_audits(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1", "SKU-2"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
        organization_id=42,
    )

    result = ImportSessionService().execute_session(import_session.id, executed_by=9)

    assert result.status is ImportSessionStatus.COMPLETED
    assert result.execution_result["total"] == 2
    assert result.execution_result["successful"] == 2
    assert result.execution_result["failed"] == 0
    assert result.message.startswith("Import completed successfully. 2 rows imported. Duration: ")
    assert result.started_at is not None and result.completed_at is not None

    stored = db.session.execute(text("SELECT organization_id, sku, price FROM products ORDER BY id")).all()
    assert [tuple(row) for row in stored] == [(42, "SKU-1", 2.5), (42, "SKU-2", 2.5)]

    entries = _audit_entries(import_session.id)
    assert [entry.row_number for entry in entries] == [1, 2]
    assert all(entry.success and entry.action_type is AuditActionType.INSERT for entry in entries)
    assert all(entry.executed_by_user_id == 9 and entry.table_name == "products" for entry in entries)
    assert entries[0].record_id is not None
    assert entries[0].after_state["sku"] == "SKU-1"


def test_execute_isolates_row_failures(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1", "SKU-1", "SKU-3"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.COMPLETED_WITH_ERRORS
    assert result.execution_result["successful"] == 2
    assert result.execution_result["failed"] == 1
    assert result.message.startswith("Import completed with errors. 2 successful, 1 failed, 0 skipped.")
    assert _product_count() == 2

    entries = _audit_entries(import_session.id)
    assert [entry.row_number for entry in entries] == [1, 2, 3]
    assert [entry.success for entry in entries] == [True, False, True]
    assert "UNIQUE" in entries[1].error_message.upper()


def test_execute_skips_rows_that_failed_validation(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1", "", "SKU-3"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
        validation_report={"invalid_row_numbers": [2]},
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.COMPLETED
    assert result.execution_result["successful"] == 2
    assert result.execution_result["skipped"] == 1
    entries = _audit_entries(import_session.id)
    assert [(entry.row_number, entry.action_type) for entry in entries] == [
        (1, AuditActionType.INSERT),
        (2, AuditActionType.SKIP),
        (3, AuditActionType.INSERT),
    ]


def test_execute_fails_when_every_row_fails(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=[{"SKU": "SKU-1", "Product Name": "A", "Price": "free"}, {"SKU": "SKU-2", "Product Name": "B", "Price": "x"}],
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.FAILED
    assert result.execution_result["failed"] == 2
    assert result.message.startswith("Import failed. All 2 rows failed.")
    assert len(_audit_entries(import_session.id)) == 2


def test_execute_with_no_rows_fails(products_schema, products_table, session_factory):
    import_session = session_factory(rows=[], status=ImportSessionStatus.APPROVED, column_mapping=MAPPING)

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.FAILED
    assert result.execution_result["successful"] == 0


def test_unsafe_table_name_aborts_before_any_row(session_factory):
    db.session.add(
        SchemaDefinition(
            domain="users",
            table_name="users; DROP TABLE x",
            display_name="Users",
            field_definitions=[{"name": "email", "required": True}],
            required_fields=["email"],
            unique_fields=[],
        )
    )
    db.session.commit()
    import_session = session_factory(
        rows=[{"Email": "ops@acme.io"}],
        domain="users",
        status=ImportSessionStatus.APPROVED,
        column_mapping={"Email": "email"},
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.FAILED
    assert result.execution_result["successful"] == 0
    assert result.execution_result["failed"] == 1
    assert "Unsafe table name" in result.execution_result["error"]
    assert result.message.startswith("Import execution failed: ")
    assert _audit_entries(import_session.id) == []


def test_unsafe_column_name_aborts_before_any_row(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1"),
        status=ImportSessionStatus.APPROVED,
        column_mapping={"SKU": "a-b", "Product Name": "name"},
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.FAILED
    assert "Unsafe column name" in result.execution_result["error"]
    assert _audit_entries(import_session.id) == []
    assert _product_count() == 0


def test_missing_target_table_rolls_back_everything(products_schema, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1", "SKU-2"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.FAILED
    assert result.execution_result["successful"] == 0
    assert result.execution_result["failed"] == 2
    assert _audit_entries(import_session.id) == []


def test_table_falls_back_to_domain_without_schema(products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )

    result = ExecutionEngine().execute(import_session, schema=None)

    assert result.status is ImportSessionStatus.COMPLETED
    assert _product_count() == 1


def test_partial_sample_is_reported_in_result(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
        source_rows=250,
    )

    result = ExecutionEngine().execute(import_session, schema=SchemaCatalog().get_active("products"))

    assert result.execution_result["source_rows"] == 250
    assert result.execution_result["total"] == 1


def test_audit_log_is_paginated_in_row_order(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("A", "B", "A"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )
    service = ImportSessionService()
    service.execute_session(import_session.id)

    page = service.get_audit_log(import_session.id, AuditFilters.coerce(page_size=2))
    assert page.total == 3
    assert page.total_pages == 2
    assert [entry.row_number for entry in page.items] == [1, 2]

    failures = service.get_audit_log(import_session.id, AuditFilters.coerce(success="false"))
    assert [entry.row_number for entry in failures.items] == [3]


@pytest.fixture
def dated_machines():
    db.session.add(
        SchemaDefinition(
            domain="machines",
            table_name="machines",
            display_name="Machines",
            field_definitions=[
                {"name": "serial_number", "required": True},
                {"name": "installed_on", "type": "date"},
            ],
            required_fields=["serial_number"],
            unique_fields=["serial_number"],
        )
    )
    db.session.execute(
        text(
            "CREATE TABLE machines ("
            " id INTEGER PRIMARY KEY AUTOINCREMENT,"
            " organization_id INTEGER NOT NULL,"
            " serial_number VARCHAR(64) NOT NULL UNIQUE,"
            " installed_on DATE"
            ")"
        )
    )
    db.session.commit()
    yield "machines"
    db.session.rollback()
    db.session.execute(text("DROP TABLE IF EXISTS machines"))
    db.session.commit()


def test_date_fields_are_bound_as_dates(dated_machines, session_factory):
    import_session = session_factory(
        rows=[
            {"Serial": "M-1", "Installed": "2024-05-01"},
            {"Serial": "M-2", "Installed": "02.05.2024"},
            {"Serial": "M-3", "Installed": "someday"},
        ],
        domain="machines",
        status=ImportSessionStatus.APPROVED,
        column_mapping={"Serial": "serial_number", "Installed": "installed_on"},
    )

    result = ImportSessionService().execute_session(import_session.id)

    assert result.status is ImportSessionStatus.COMPLETED_WITH_ERRORS
    assert result.execution_result["successful"] == 2
    assert result.execution_result["failed"] == 1
    stored = db.session.execute(text("SELECT installed_on FROM machines ORDER BY id")).scalars().all()
    assert stored == ["2024-05-01", "2024-05-02"]

    entries = _audit_entries(import_session.id)
    assert entries[0].after_state["installed_on"] == "2024-05-01"
    assert entries[2].success is False
    assert "expects a date" in entries[2].error_message


def test_bind_errors_without_schema_types_stay_row_level(dated_machines, session_factory):
    import_session = session_factory(
        rows=[{"Serial": "M-1", "Installed": "2024-05-01"}],
        domain="machines",
        status=ImportSessionStatus.APPROVED,
        column_mapping={"Serial": "serial_number", "Installed": "installed_on"},
    )

    result = ExecutionEngine().execute(import_session, schema=None)

    assert result.status is ImportSessionStatus.FAILED
    assert "error" not in result.execution_result
    assert result.message.startswith("Import failed. All 1 rows failed.")
    entries = _audit_entries(import_session.id)
    assert len(entries) == 1 and entries[0].success is False


def test_fault_after_inserted_rows_rolls_back_rows_and_audit(
    products_schema, products_table, session_factory, monkeypatch
):
    import_session = session_factory(
        rows=_rows("SKU-1", "SKU-2", "SKU-3"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )
    coerce_record = execution._coerce_record
    calls = []

    def coerce_then_fail(record, specs):
        calls.append(record)
        if len(calls) == 2:
            raise RuntimeError("lost connection to target database")
        return coerce_record(record, specs)

    monkeypatch.setattr(execution, "_coerce_record", coerce_then_fail)

    result = ImportSessionService().execute_session(import_session.id)

    assert len(calls) == 2
    assert result.status is ImportSessionStatus.FAILED
    assert result.execution_result["successful"] == 0
    assert result.execution_result["failed"] == 3
    assert result.message == "Import execution failed: lost connection to target database"
    assert _product_count() == 0
    assert _audit_entries(import_session.id) == []


def test_audit_ledger_blocks_session_deletion(products_schema, products_table, session_factory):
    import_session = session_factory(
        rows=_rows("SKU-1", "SKU-2"),
        status=ImportSessionStatus.APPROVED,
        column_mapping=MAPPING,
    )
    ImportSessionService().execute_session(import_session.id)
    assert len(import_session.audit_logs) == 2

    db.session.delete(import_session)
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    assert len(_audit_entries(import_session.id)) == 2


def test_audit_relationships_never_cascade():
    relationship = inspect(ImportSession).relationships["audit_logs"]
    assert relationship.viewonly
    assert not relationship.cascade.delete
    (foreign_key,) = ImportAuditLog.__table__.c.session_id.foreign_keys
    assert foreign_key.ondelete == "RESTRICT"
