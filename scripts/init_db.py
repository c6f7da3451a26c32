import sys
from pathlib import Path
import os

from sqlalchemy.orm import Session

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.sms.models import Company, User
from app.sms.modules.compliance.models import ComplianceRule
from app.sms.modules.compliance.service import DEFAULT_COMPLIANCE_RULE, create_compliance_rule
from app.sms.modules.documents.models import DocumentWorkflow
from app.sms.modules.documents.service import create_workflow
from app.sms.modules.documents.workflow import DEFAULT_WORKFLOW_DEFINITION
from scripts._db_utils import script_session

DEFAULT_WORKFLOW_NAME = "Standard Document Workflow"


def seed(s: Session, *, company_slug: str, company_name: str, admin_email: str) -> tuple[Company, User]:
    """
    Idempotent seed: company, admin user, default workflow, default compliance rule.
    Existing rows are left untouched.
    """
    company = s.query(Company).filter(Company.slug == company_slug).one_or_none()
    if not company:
        company = Company(name=company_name, slug=company_slug, is_active=True)
        s.add(company)
        s.flush()

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(email=admin_email, name="Administrator", company_id=company.id, is_active=True)
        s.add(user)
        s.flush()

    wf = (
        s.query(DocumentWorkflow)
        .filter(DocumentWorkflow.company_id == company.id, DocumentWorkflow.name == DEFAULT_WORKFLOW_NAME)
        .one_or_none()
    )
    if not wf:
        create_workflow(
            s,
            company.id,
            {
                "name": DEFAULT_WORKFLOW_NAME,
                "description": "Draft, review, approval and publication",
                "definition": DEFAULT_WORKFLOW_DEFINITION,
            },
            user=user,
        )

    rule = (
        s.query(ComplianceRule)
        .filter(ComplianceRule.company_id == company.id, ComplianceRule.name == DEFAULT_COMPLIANCE_RULE["name"])
        .one_or_none()
    )
    if not rule:
        create_compliance_rule(s, company.id, DEFAULT_COMPLIANCE_RULE, user=user)

    return company, user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@sms.local").strip().lower()
    company_slug = (os.environ.get("SEED_COMPANY_SLUG") or "demo").strip().lower()
    company_name = (os.environ.get("SEED_COMPANY_NAME") or "Demo Company").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///sms.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        company, _ = seed(s, company_slug=company_slug, company_name=company_name, admin_email=admin_email)

    print("Initialized database (seed_only).")
    print(f"Company: {company_slug}")
    print(f"Admin email: {admin_email}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
