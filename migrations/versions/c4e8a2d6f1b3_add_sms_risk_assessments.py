"""add sms risk assessments

Revision ID: c4e8a2d6f1b3
Revises: a1f3c5e7b902
Create Date: 2026-10-19 10:41:03.518226

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c4e8a2d6f1b3'
down_revision: Union[str, Sequence[str], None] = 'a1f3c5e7b902'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'sms_risk_assessments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('risk_level', sa.String(length=16), nullable=False),
        sa.Column('probability', sa.Float(), nullable=False),
        sa.Column('impact', sa.Float(), nullable=False),
        sa.Column('mitigation', sa.Text(), nullable=True),
        sa.Column('assessor_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assessor_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_risk_assessments_company_level', 'sms_risk_assessments', ['company_id', 'risk_level'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_risk_assessments_company_level', table_name='sms_risk_assessments')
    op.drop_table('sms_risk_assessments')
