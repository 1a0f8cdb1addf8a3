# handlers/catalog_handlers.py
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query

from api_models import PhoneListResponse
from handlers.dependencies import get_catalog, get_np_client, get_rate_service
from services.catalog_service import SheetsCatalog
from services.delivery_service import NovaPoshtaClient
from services.rate_service import TonRateService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Catalog"])


# --- Каталог номерів ---

@router.get("/phones", response_model=PhoneListResponse)
async def get_phones(catalog: SheetsCatalog = Depends(get_catalog)):
    phones = await catalog.fetch_phones()
    return PhoneListResponse(count=len(phones), data=phones)


@router.get("/phones/category/{category}", response_model=PhoneListResponse)
async def get_phones_by_category(category: str, catalog: SheetsCatalog = Depends(get_catalog)):
    phones = await catalog.by_category(category)
    return PhoneListResponse(count=len(phones), data=phones)


@router.get("/phones/search/{query}", response_model=PhoneListResponse)
async def search_phones(query: str, catalog: SheetsCatalog = Depends(get_catalog)):
    phones = await catalog.search(query)
    return PhoneListResponse(count=len(phones), data=phones)


@router.get("/phones/{phone_id}")
async def get_phone(phone_id: int, catalog: SheetsCatalog = Depends(get_catalog)):
    phone = await catalog.get_phone(phone_id)
    if phone is None:
        raise HTTPException(status_code=404, detail="Номер не знайдено")
    return {"success": True, "data": phone}


# --- Курс TON ---

@router.get("/ton-rate")
async def get_ton_rate(rates: TonRateService = Depends(get_rate_service)):
    rate = await rates.get_rate()
    last_update = None
    if rates.last_update is not None:
        last_update = datetime.fromtimestamp(rates.last_update, tz=timezone.utc).isoformat()
    return {"success": True, "rate": float(rate), "lastUpdate": last_update}


@router.get("/health")
async def health_check():
    return {"success": True, "message": "API працює", "timestamp": datetime.now(timezone.utc).isoformat()}


# --- Нова Пошта (для веб-форми доставки) ---

@router.get("/delivery/cities")
async def find_cities(q: str = Query(..., min_length=2), np_client: NovaPoshtaClient = Depends(get_np_client)):
    cities = await np_client.find_np_city(q)
    data = [
        {
            "name": c.get("MainDescription") or c.get("Present"),
            "present": c.get("Present"),
            "region": c.get("Area"),
            "district": c.get("Region") or "-",
            "ref": c.get("DeliveryCity") or c.get("Ref"),
        }
        for c in cities
    ]
    return {"success": True, "count": len(data), "data": data}


@router.get("/delivery/warehouses")
async def find_warehouses(
    city_ref: str = Query(..., min_length=1),
    q: str = "",
    np_client: NovaPoshtaClient = Depends(get_np_client),
):
    warehouses = await np_client.find_np_warehouses(city_ref, q)
    data = [{"ref": w.get("Ref"), "label": w.get("Description")} for w in warehouses]
    return {"success": True, "count": len(data), "data": data}
