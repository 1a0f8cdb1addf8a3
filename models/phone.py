# models/phone.py
from typing import List

from pydantic import BaseModel, Field


class Phone(BaseModel):
    """Номер з каталогу. Перераховується при кожному завантаженні таблиці."""
    id: int
    raw_number: str
    formatted_number: str
    operator: str
    category: str
    price: int
    description: str
    features: List[str] = Field(default_factory=list)
