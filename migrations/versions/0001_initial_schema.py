"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-01 00:00:00.000000

Tables: user_baselines, daily_metrics, recovery_scores, user_memories,
user_state, mvd_history, protocol_logs, nudge_logs.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- ENUM types ---
    protocol_log_status = sa.Enum("completed", "skipped", name="protocol_log_status")
    protocol_log_status.create(op.get_bind(), checkfirst=True)

    # --- user_baselines ---
    op.create_table(
        "user_baselines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("hrv_ln_mean", sa.Float(), nullable=True),
        sa.Column("hrv_ln_std_dev", sa.Float(), nullable=True),
        sa.Column("hrv_coefficient_of_variation", sa.Float(), nullable=True),
        sa.Column("hrv_sample_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rhr_mean", sa.Float(), nullable=True),
        sa.Column("rhr_std_dev", sa.Float(), nullable=True),
        sa.Column("rhr_sample_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("respiratory_rate_mean", sa.Float(), nullable=True),
        sa.Column("respiratory_rate_std_dev", sa.Float(), nullable=True),
        sa.Column("respiratory_sample_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sleep_duration_target_minutes", sa.Float(), nullable=False, server_default="420"),
        sa.Column("sleep_sample_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("temperature_baseline_celsius", sa.Float(), nullable=False, server_default="36.5"),
        sa.Column("sample_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("confidence_level", sa.String(16), nullable=False, server_default="low"),
        sa.Column("menstrual_cycle_tracking", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cycle_day", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_baselines_id", "user_baselines", ["id"])
    op.create_index("ix_user_baselines_user_id", "user_baselines", ["user_id"], unique=True)

    # --- daily_metrics ---
    op.create_table(
        "daily_metrics",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("hrv_avg", sa.Float(), nullable=True),
        sa.Column("rhr_avg", sa.Float(), nullable=True),
        sa.Column("sleep_hours", sa.Float(), nullable=True),
        sa.Column("sleep_efficiency", sa.Float(), nullable=True),
        sa.Column("deep_pct", sa.Float(), nullable=True),
        sa.Column("rem_pct", sa.Float(), nullable=True),
        sa.Column("respiratory_rate", sa.Float(), nullable=True),
        sa.Column("temperature_deviation", sa.Float(), nullable=True),
        sa.Column("steps", sa.Integer(), nullable=True),
        sa.Column("active_energy", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "day", name="uq_daily_metric_user_day"),
    )
    op.create_index("ix_daily_metrics_id", "daily_metrics", ["id"])
    op.create_index("ix_daily_metrics_user_id", "daily_metrics", ["user_id"])
    op.create_index("ix_daily_metrics_day", "daily_metrics", ["day"])

    # --- recovery_scores ---
    op.create_table(
        "recovery_scores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("zone", sa.String(8), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("temperature_penalty", sa.Float(), nullable=False, server_default="0"),
        sa.Column("data_completeness", sa.Float(), nullable=False, server_default="0"),
        sa.Column("components", sa.Text(), nullable=False, comment="JSON object keyed by component"),
        sa.Column("edge_cases", sa.Text(), nullable=False, comment="JSON object"),
        sa.Column("recommendations", sa.Text(), nullable=False, comment="JSON array"),
        sa.Column("missing_inputs", sa.Text(), nullable=True, comment="JSON array"),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "day", name="uq_recovery_user_day"),
    )
    op.create_index("ix_recovery_scores_id", "recovery_scores", ["id"])
    op.create_index("ix_recovery_scores_user_id", "recovery_scores", ["user_id"])
    op.create_index("ix_recovery_scores_day", "recovery_scores", ["day"])

    # --- user_memories ---
    op.create_table(
        "user_memories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("memory_type", sa.String(32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("evidence_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("decay_rate", sa.Float(), nullable=False, server_default="0.05"),
        sa.Column("source_protocol_id", sa.String(128), nullable=True),
        sa.Column("source_nudge_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_decayed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_memories_id", "user_memories", ["id"])
    op.create_index("ix_user_memories_user_id", "user_memories", ["user_id"])
    op.create_index("ix_user_memories_source_protocol_id", "user_memories", ["source_protocol_id"])
    op.create_index("ix_user_memories_user_type", "user_memories", ["user_id", "memory_type"])

    # --- user_state ---
    op.create_table(
        "user_state",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("mvd_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mvd_type", sa.String(16), nullable=True),
        sa.Column("mvd_trigger", sa.String(32), nullable=True),
        sa.Column("mvd_activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mvd_exit_condition", sa.String(128), nullable=True),
        sa.Column("mvd_last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mvd_last_deactivation_reason", sa.String(128), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("quiet_hours_start", sa.Integer(), nullable=False, server_default="22"),
        sa.Column("quiet_hours_end", sa.Integer(), nullable=False, server_default="6"),
        sa.Column("primary_goal", sa.String(32), nullable=True),
        sa.Column("dashboard", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_state_id", "user_state", ["id"])
    op.create_index("ix_user_state_user_id", "user_state", ["user_id"], unique=True)

    # --- mvd_history ---
    op.create_table(
        "mvd_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("mvd_type", sa.String(16), nullable=False),
        sa.Column("trigger", sa.String(32), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_hours", sa.Float(), nullable=True),
        sa.Column("deactivation_reason", sa.String(128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mvd_history_id", "mvd_history", ["id"])
    op.create_index("ix_mvd_history_user_id", "mvd_history", ["user_id"])

    # --- protocol_logs ---
    op.create_table(
        "protocol_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("protocol_id", sa.String(128), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("status", sa.Enum(
            "completed", "skipped", name="protocol_log_status", create_type=False,
        ), nullable=False),
        sa.Column("logged_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "protocol_id", "day", name="uq_protocol_log_user_protocol_day",
        ),
    )
    op.create_index("ix_protocol_logs_id", "protocol_logs", ["id"])
    op.create_index("ix_protocol_logs_user_id", "protocol_logs", ["user_id"])
    op.create_index("ix_protocol_logs_day", "protocol_logs", ["day"])

    # --- nudge_logs ---
    op.create_table(
        "nudge_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("nudge_id", sa.String(128), nullable=False),
        sa.Column("protocol_id", sa.String(128), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False),
        sa.Column("suppressed_by", sa.String(32), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("rules_checked", sa.Text(), nullable=False, comment="JSON array of rule ids"),
        sa.Column("was_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("recovery_score", sa.Integer(), nullable=True),
        sa.Column("mvd_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("decision", sa.Text(), nullable=False),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("feedback", sa.String(16), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("feedback_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "nudge_id", name="uq_nudge_log_user_nudge"),
    )
    op.create_index("ix_nudge_logs_id", "nudge_logs", ["id"])
    op.create_index("ix_nudge_logs_user_id", "nudge_logs", ["user_id"])
    op.create_index("ix_nudge_logs_delivered", "nudge_logs", ["delivered"])
    op.create_index("ix_nudge_logs_evaluated_at", "nudge_logs", ["evaluated_at"])


def downgrade() -> None:
    op.drop_table("nudge_logs")
    op.drop_table("protocol_logs")
    op.drop_table("mvd_history")
    op.drop_table("user_state")
    op.drop_table("user_memories")
    op.drop_table("recovery_scores")
    op.drop_table("daily_metrics")
    op.drop_table("user_baselines")

    sa.Enum(name="protocol_log_status").drop(op.get_bind(), checkfirst=True)
