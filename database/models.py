from typing import Optional

from pydantic import BaseModel


class Asset(BaseModel):
    asset_id: str
    owner: str
    description: str
    registered_at: int


class Transfer(BaseModel):
    id: int
    asset_id: str
    old_owner: str
    new_owner: str
    timestamp: int
    txn_hash: str
    block_number: Optional[int] = None


class TopOwner(BaseModel):
    owner: str
    transfer_count: int
