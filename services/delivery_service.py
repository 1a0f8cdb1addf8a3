# services/delivery_service.py
import asyncio
import logging
import aiohttp
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)


class NovaPoshtaClient:
    """Пошук населених пунктів і відділень Нової Пошти для форми доставки."""

    def __init__(self, api_key: Optional[str], api_url: str, timeout_seconds: float = 10.0):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds

    async def _np_api_request(self, model_name: str, called_method: str, method_properties: Dict[str, Any]) -> List[Dict[str, Any]] | None:
        """Універсальна функція для відправки запитів до API Нової Пошти."""
        if not self.api_key:
            logger.error("NP_API_KEY не налаштовано!")
            return None

        payload = {
            "apiKey": self.api_key,
            "modelName": model_name,
            "calledMethod": called_method,
            "methodProperties": method_properties,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.api_url, json=payload) as response:
                    response.raise_for_status()
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Помилка з'єднання з API Нової Пошти: {e}")
            return None

        if data.get("success"):
            return data.get("data")
        logger.error(f"Помилка від API Нової Пошти: {data.get('errors')}")
        return None

    async def find_np_city(self, query: str) -> List[Dict[str, Any]]:
        """
        Шукає населені пункти за назвою.
        Кожен результат містить Present, MainDescription, Area (область), Region (район), DeliveryCity (ref).
        """
        data = await self._np_api_request("Address", "searchSettlements", {"CityName": query, "Limit": "10"})
        if data and data[0].get("TotalCount", 0) > 0:
            return data[0]["Addresses"]
        return []

    async def find_np_warehouses(self, city_ref: str, query: str = "") -> List[Dict[str, Any]]:
        """Шукає відділення Нової Пошти в конкретному місті."""
        method_properties = {"CityRef": city_ref, "Limit": "500"}
        if query:
            method_properties["FindByString"] = query
        data = await self._np_api_request("Address", "getWarehouses", method_properties)
        return data if data else []
