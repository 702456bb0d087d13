# FILE: pharmledger/api/router.py
from fastapi import APIRouter

from pharmledger.api import routes_backup, routes_bills, routes_medicines

api_router = APIRouter()

api_router.include_router(routes_medicines.router)
api_router.include_router(routes_bills.router)
api_router.include_router(routes_backup.router)
