from __future__ import annotations

import pytest
from sqlalchemy import text

from smart_import.importer.pipeline import ImportSessionService
from smart_import.models import db
from smart_import.models.importer import (
    ApprovalStatus,
    ImportSession,
    ImportSessionStatus,
    RuleSeverity,
    SchemaDefinition,
    ValidationRule,
    ValidationRuleType,
)

PRODUCT_FIELDS = [
    {
        "name": "sku",
        "display_name": "SKU",
        "type": "string",
        "required": True,
        "synonyms": ["product code", "item code", "article"],
    },
    {
        "name": "name",
        "display_name": "Product Name",
        "type": "string",
        "required": True,
        "synonyms": ["title", "product"],
    },
    {
        "name": "price",
        "display_name": "Price",
        "type": "number",
        "synonyms": ["unit price", "cost"],
    },
    {"name": "category", "display_name": "Category", "type": "string", "synonyms": ["product category"]},
    {
        "name": "status",
        "display_name": "Status",
        "type": "string",
        "synonyms": ["state"],
        "default": "active",
    },
]

MACHINE_FIELDS = [
    {"name": "serial_number", "display_name": "Serial Number", "required": True, "synonyms": ["serial", "machine id"]},
    {"name": "model", "display_name": "Model", "required": True, "synonyms": ["machine model"]},
    {"name": "location", "display_name": "Location", "synonyms": ["site"]},
]

PRODUCT_CSV = (
    b"SKU,Product Name,Price,Category\n"
    b"SKU-1,Espresso Beans,12.50,coffee\n"
    b"SKU-2,Oat Milk,3.20,dairy\n"
    b"SKU-3,Paper Cups,0.15,supplies\n"
)


@pytest.fixture
def service() -> ImportSessionService:
    return ImportSessionService()


@pytest.fixture
def products_schema():
    definition = SchemaDefinition(
        domain="products",
        table_name="products",
        display_name="Products",
        field_definitions=PRODUCT_FIELDS,
        required_fields=["sku", "name"],
        unique_fields=["sku"],
        version="1.0",
    )
    db.session.add(definition)
    db.session.commit()
    return definition


@pytest.fixture
def machines_schema():
    definition = SchemaDefinition(
        domain="machines",
        table_name="machines",
        display_name="Machines",
        field_definitions=MACHINE_FIELDS,
        required_fields=["serial_number", "model"],
        unique_fields=["serial_number"],
        version="2.0",
    )
    db.session.add(definition)
    db.session.commit()
    return definition


@pytest.fixture
def rule_factory():
    def _factory(
        field_name: str,
        rule_type: ValidationRuleType,
        *,
        definition: dict | None = None,
        severity: RuleSeverity = RuleSeverity.ERROR,
        priority: int = 0,
        message: str | None = None,
        domain: str = "products",
        rule_name: str | None = None,
    ) -> ValidationRule:
        rule = ValidationRule(
            domain=domain,
            rule_name=rule_name or f"{field_name}_{rule_type.value}_{priority}",
            field_name=field_name,
            rule_type=rule_type,
            rule_definition=definition or {},
            severity=severity,
            priority=priority,
            error_message_template=message,
        )
        db.session.add(rule)
        db.session.commit()
        return rule

    return _factory


@pytest.fixture
def products_rules(products_schema, rule_factory):
    return [
        rule_factory("sku", ValidationRuleType.REQUIRED, priority=1),
        rule_factory("name", ValidationRuleType.REQUIRED, priority=2),
        rule_factory("price", ValidationRuleType.RANGE, definition={"min": 0}, priority=3),
    ]


@pytest.fixture
def products_table():
    db.session.execute(
        text(
            "CREATE TABLE products ("
            " id INTEGER PRIMARY KEY AUTOINCREMENT,"
            " organization_id INTEGER NOT NULL,"
            " sku VARCHAR(64) NOT NULL UNIQUE,"
            " name VARCHAR(200) NOT NULL,"
            " price REAL,"
            " category VARCHAR(100),"
            " status VARCHAR(40)"
            ")"
        )
    )
    db.session.commit()
    yield "products"
    db.session.rollback()
    db.session.execute(text("DROP TABLE IF EXISTS products"))
    db.session.commit()


@pytest.fixture
def session_factory():
    """Persist an ImportSession directly in the requested status."""

    def _factory(
        *,
        rows: list[dict] | None = None,
        status: ImportSessionStatus = ImportSessionStatus.UPLOADED,
        domain: str = "products",
        organization_id: int = 1,
        column_mapping: dict | None = None,
        validation_report: dict | None = None,
        classification_confidence: float | None = None,
        source_rows: int | None = None,
        approval_status: ApprovalStatus = ApprovalStatus.PENDING,
    ) -> ImportSession:
        rows = rows or []
        headers = list(rows[0].keys()) if rows else []
        import_session = ImportSession(
            organization_id=organization_id,
            domain=domain,
            status=status,
            approval_status=approval_status,
            file_name=f"{domain}.csv",
            file_size=0,
            file_type="csv",
            file_metadata={
                "rows": source_rows if source_rows is not None else len(rows),
                "columns": len(headers),
                "headers": headers,
                "sample_data": rows,
            },
            column_mapping=column_mapping,
            validation_report=validation_report,
            classification_confidence=classification_confidence,
        )
        db.session.add(import_session)
        db.session.commit()
        return import_session

    return _factory


@pytest.fixture
def product_csv() -> bytes:
    return PRODUCT_CSV
