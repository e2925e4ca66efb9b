"""
Re-derive every contractor profile from its user's contractor subscription.

Repairs profiles left behind by a cascade write that did not land, and
creates the profile for contractors who have a paid tier but none on file.

Run: python -m scripts.reconcile_contractor_profiles [--dry-run]
"""
import sys
import logging

from app.core.pricing import NO_CONTRACTOR_TIER
from app.db.session import SessionLocal
from app.db.models.user import User
from app.db.models.contractor_profile import ContractorProfile
from app.services.reconciliation import derive_contractor_profile, get_or_create_contractor_profile

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def reconcile(dry_run: bool = False) -> dict:
    db = SessionLocal()
    results = {"checked": 0, "repaired": 0, "created": 0}
    try:
        contractors = db.query(User).filter(
            (User.is_contractor.is_(True)) | (User.contractor_tier != NO_CONTRACTOR_TIER)
        ).all()
        for user in contractors:
            results["checked"] += 1
            existing = db.query(ContractorProfile).filter(ContractorProfile.user_id == user.id).first()
            profile = existing or get_or_create_contractor_profile(db, user)
            if not existing:
                results["created"] += 1
                logger.info(f"Created missing contractor profile for user_id={user.id}")
            if derive_contractor_profile(user, profile) and existing:
                results["repaired"] += 1

        if dry_run:
            logger.info("Dry run, rolling back")
            db.rollback()
        else:
            db.commit()
        return results
    except Exception:
        db.rollback()
        logger.exception("Contractor profile reconciliation failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    dry_run = "--dry-run" in sys.argv[1:]
    results = reconcile(dry_run=dry_run)
    print(f"\n[DONE] checked={results['checked']} repaired={results['repaired']} created={results['created']}"
          f"{' (dry run)' if dry_run else ''}")
