"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class EntityType(StrEnum):
    """Canonical entity types external systems map into."""

    # HR
    EMPLOYEE = "Employee"
    DEPARTMENT = "Department"
    ORGANIZATIONAL_UNIT = "OrganizationalUnit"
    POSITION = "Position"
    TRAINING_RECORD = "TrainingRecord"

    # Finance
    SPEND = "Spend"
    REVENUE = "Revenue"
    CAPITAL_EXPENDITURE = "CapitalExpenditure"
    OPERATIONAL_EXPENDITURE = "OperationalExpenditure"
    SUPPLIER = "Supplier"
    INVOICE = "Invoice"

    # Environmental
    ENERGY_CONSUMPTION = "EnergyConsumption"
    WATER_USAGE = "WaterUsage"
    WASTE_GENERATION = "WasteGeneration"
    EMISSIONS_RECORD = "EmissionsRecord"

    # Social
    SAFETY_INCIDENT = "SafetyIncident"
    COMMUNITY_ENGAGEMENT = "CommunityEngagement"

    # Governance
    COMPLIANCE_RECORD = "ComplianceRecord"
    POLICY_DOCUMENT = "PolicyDocument"


class DataType(StrEnum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"


class TransformKind(StrEnum):
    DIRECT = "direct"
    SUM = "sum"
    AVERAGE = "average"
    LOOKUP = "lookup"
    FTE = "fte"


class SyncStatus(StrEnum):
    """Outcome of processing one raw record."""

    SUCCESS = "Success"
    REJECTED = "Rejected"
    CONFLICT_PRESERVED = "ConflictPreserved"
    FAILED = "Failed"


class ConflictResolution(StrEnum):
    NONE = "None"
    PRESERVED_MANUAL = "PreservedManual"
    ADMIN_OVERRIDE = "AdminOverride"


class JobStatus(StrEnum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    SKIPPED = "Skipped"


class CallStatus(StrEnum):
    """Terminal status of one coordinated external call."""

    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class AttemptOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"
