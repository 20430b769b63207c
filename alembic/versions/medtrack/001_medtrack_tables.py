"""create_medtrack_tables

Revision ID: 001
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = ("medtrack",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS medicines (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            form TEXT NOT NULL DEFAULT 'PILL',
            frequency_type TEXT NOT NULL,
            frequency_config JSONB NOT NULL DEFAULT '{}',
            intake_schedules JSONB NOT NULL DEFAULT '[]',
            schedule_start DATE NOT NULL,
            schedule_duration INTEGER CHECK (schedule_duration IS NULL OR schedule_duration >= 0),
            current_inventory DOUBLE PRECISION,
            total_inventory DOUBLE PRECISION,
            refill_reminder_threshold DOUBLE PRECISION NOT NULL DEFAULT 5,
            is_active BOOLEAN NOT NULL DEFAULT true,
            condition_reason TEXT,
            food_instruction TEXT,
            auto_deduct_inventory BOOLEAN NOT NULL DEFAULT true,
            notifications_enabled BOOLEAN NOT NULL DEFAULT true,
            missed_dose_threshold_minutes INTEGER NOT NULL DEFAULT 60,
            allow_late_intake BOOLEAN NOT NULL DEFAULT true,
            late_intake_window_hours INTEGER NOT NULL DEFAULT 4,
            pause_reason TEXT,
            resume_at TIMESTAMP,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_medicines_user_active
        ON medicines (user_id, is_active)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS intake_events (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            medicine_id TEXT NOT NULL REFERENCES medicines(id) ON DELETE CASCADE,
            medicine_name TEXT NOT NULL DEFAULT '',
            scheduled_datetime TIMESTAMP NOT NULL,
            scheduled_amount DOUBLE PRECISION NOT NULL,
            status TEXT NOT NULL DEFAULT 'SCHEDULED'
                CHECK (status IN ('SCHEDULED', 'TAKEN', 'SKIPPED', 'MISSED')),
            actual_datetime TIMESTAMP,
            actual_amount DOUBLE PRECISION,
            skip_reason TEXT,
            note TEXT,
            current_inventory DOUBLE PRECISION,
            refill_reminder_threshold DOUBLE PRECISION,
            food_instruction TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (medicine_id, scheduled_datetime)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_intake_events_user_scheduled
        ON intake_events (user_id, scheduled_datetime)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS state (
            key TEXT PRIMARY KEY,
            value JSONB NOT NULL DEFAULT '{}',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            version INTEGER NOT NULL DEFAULT 1
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS state")
    op.execute("DROP TABLE IF EXISTS intake_events")
    op.execute("DROP TABLE IF EXISTS medicines")
