"""
/loans API: every lending sub-module mounted under one prefix.
"""
from fastapi import APIRouter

from app.modules.eligibility.router import router as eligibility_router
from app.modules.applications.router import router as applications_router
from app.modules.guarantors.router import router as guarantors_router
from app.modules.committee.router import router as committee_router
from app.modules.threshold.router import router as threshold_router
from app.modules.register.router import router as register_router
from app.modules.deductions.router import router as deductions_router
from app.modules.delinquency.router import router as delinquency_router
from app.modules.members.router import router as members_router
from app.modules.notifications.router import router as events_router

router = APIRouter(prefix="/loans")

router.include_router(eligibility_router)
router.include_router(applications_router)
router.include_router(guarantors_router)
router.include_router(committee_router)
router.include_router(threshold_router)
router.include_router(register_router)
router.include_router(deductions_router)
router.include_router(delinquency_router)
router.include_router(members_router)
router.include_router(events_router)
