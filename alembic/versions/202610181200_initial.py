"""initial schema

Revision ID: 202610181200
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610181200"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "scenarios",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "parent_scenario_id", sa.String(length=36), sa.ForeignKey("scenarios.id")
        ),
        sa.Column(
            "approval_status",
            sa.Enum("draft", "reviewed", "approved", name="approvalstatus"),
            nullable=False,
        ),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "forecast_stale", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("forecast_generated_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "vendors",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("website", sa.String(length=300)),
        sa.Column("notes", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "active",
                "trial",
                "deprecated",
                "retiring",
                "retired",
                name="servicestatus",
            ),
            nullable=False,
        ),
        sa.Column("owner_team", sa.String(length=120)),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "contracts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "service_id",
            sa.String(length=36),
            sa.ForeignKey("services.id"),
            nullable=False,
        ),
        sa.Column("contract_number", sa.String(length=120)),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        sa.Column("renewal_type", sa.String(length=20)),
        sa.Column("renewal_date", sa.Date()),
        sa.Column("notice_period_days", sa.Integer()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "notice_period_days IS NULL OR notice_period_days >= 0",
            name="ck_contract_notice_non_negative",
        ),
    )
    op.create_index("ix_contracts_renewal_date", "contracts", ["renewal_date"])

    op.create_table(
        "expense_lines",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.String(length=36),
            sa.ForeignKey("scenarios.id"),
            nullable=False,
        ),
        sa.Column(
            "service_id",
            sa.String(length=36),
            sa.ForeignKey("services.id"),
            nullable=False,
        ),
        sa.Column("contract_id", sa.String(length=36), sa.ForeignKey("contracts.id")),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "expense_type",
            sa.Enum("recurring", "one_time", name="expensetype"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "planned",
                "approved",
                "committed",
                "actual",
                "cancelled",
                name="expensestatus",
            ),
            nullable=False,
        ),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_minor >= 0", name="ck_expense_line_amount_positive"),
    )
    op.create_index(
        "ix_expense_lines_scenario", "expense_lines", ["scenario_id", "deleted_at"]
    )

    op.create_table(
        "recurrence_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "expense_line_id",
            sa.String(length=36),
            sa.ForeignKey("expense_lines.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "frequency",
            sa.Enum("monthly", "quarterly", "yearly", name="frequency"),
            nullable=False,
        ),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("month_of_year", sa.Integer()),
        sa.Column("anchor_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("interval > 0", name="ck_recurrence_interval_positive"),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_recurrence_day_of_month"
        ),
        sa.CheckConstraint(
            "month_of_year IS NULL OR month_of_year BETWEEN 1 AND 12",
            name="ck_recurrence_month_of_year",
        ),
    )

    op.create_table(
        "occurrences",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.String(length=36),
            sa.ForeignKey("scenarios.id"),
            nullable=False,
        ),
        sa.Column(
            "expense_line_id",
            sa.String(length=36),
            sa.ForeignKey("expense_lines.id"),
            nullable=False,
        ),
        sa.Column("occurrence_date", sa.Date(), nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "state",
            sa.Enum("forecast", "actualized", name="occurrencestate"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_occurrences_scenario_date", "occurrences", ["scenario_id", "occurrence_date"]
    )

    op.create_table(
        "spend_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.String(length=36),
            sa.ForeignKey("scenarios.id"),
            nullable=False,
        ),
        sa.Column(
            "service_id",
            sa.String(length=36),
            sa.ForeignKey("services.id"),
            nullable=False,
        ),
        sa.Column("contract_id", sa.String(length=36), sa.ForeignKey("contracts.id")),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "matched_occurrence_id",
            sa.String(length=36),
            sa.ForeignKey("occurrences.id", deferrable=True, initially="DEFERRED"),
            unique=True,
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_minor >= 0", name="ck_spend_txn_amount_positive"),
    )
    op.create_index(
        "ix_spend_txn_scenario_date",
        "spend_transactions",
        ["scenario_id", "transaction_date"],
    )

    op.create_table(
        "service_plans",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.String(length=36),
            sa.ForeignKey("scenarios.id"),
            nullable=False,
        ),
        sa.Column(
            "service_id",
            sa.String(length=36),
            sa.ForeignKey("services.id"),
            nullable=False,
        ),
        sa.Column(
            "planned_action",
            sa.Enum("keep", "replace", "retire", name="plannedaction"),
            nullable=False,
        ),
        sa.Column(
            "decision_status", sa.String(length=20), nullable=False, server_default="draft"
        ),
        sa.Column("reason_code", sa.String(length=40)),
        sa.Column("must_replace_by", sa.Date()),
        sa.Column(
            "replacement_required",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "replacement_selected_service_id",
            sa.String(length=36),
            sa.ForeignKey("services.id"),
        ),
        *_timestamps(),
    )

    op.create_table(
        "alert_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.String(length=36),
            sa.ForeignKey("scenarios.id"),
            nullable=False,
        ),
        sa.Column(
            "rule_type",
            sa.Enum(
                "upcoming_payment",
                "renewal_window",
                "notice_window",
                "replacement_missing",
                "eol_date",
                name="alertruletype",
            ),
            nullable=False,
        ),
        sa.Column("params_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "channels", sa.String(length=120), nullable=False, server_default="in_app"
        ),
        *_timestamps(),
    )
    op.create_index("ix_alert_rules_enabled", "alert_rules", ["enabled"])

    op.create_table(
        "alert_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "scenario_id",
            sa.String(length=36),
            sa.ForeignKey("scenarios.id"),
            nullable=False,
        ),
        sa.Column(
            "alert_rule_id",
            sa.String(length=36),
            sa.ForeignKey("alert_rules.id"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("fire_at", sa.Date(), nullable=False),
        sa.Column("fired_at", sa.Date()),
        sa.Column(
            "status",
            sa.Enum("pending", "snoozed", "acked", name="alertstatus"),
            nullable=False,
        ),
        sa.Column("snoozed_until", sa.Date()),
        sa.Column("dedupe_key", sa.String(length=300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("dedupe_key", name="uq_alert_event_dedupe_key"),
        sa.CheckConstraint(
            "status != 'snoozed' OR snoozed_until IS NOT NULL",
            name="ck_alert_event_snooze_date",
        ),
    )
    op.create_index(
        "ix_alert_events_notify",
        "alert_events",
        ["status", "fired_at", "fire_at", "snoozed_until"],
    )


def downgrade():
    op.drop_index("ix_alert_events_notify", table_name="alert_events")
    op.drop_table("alert_events")
    op.drop_index("ix_alert_rules_enabled", table_name="alert_rules")
    op.drop_table("alert_rules")
    op.drop_table("service_plans")
    op.drop_index("ix_spend_txn_scenario_date", table_name="spend_transactions")
    op.drop_table("spend_transactions")
    op.drop_index("ix_occurrences_scenario_date", table_name="occurrences")
    op.drop_table("occurrences")
    op.drop_table("recurrence_rules")
    op.drop_index("ix_expense_lines_scenario", table_name="expense_lines")
    op.drop_table("expense_lines")
    op.drop_index("ix_contracts_renewal_date", table_name="contracts")
    op.drop_table("contracts")
    op.drop_table("services")
    op.drop_table("vendors")
    op.drop_table("scenarios")
