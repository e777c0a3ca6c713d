from typing import Dict, List, Optional
from microboot.types.base import BaseModel


class AppConfigStatus(BaseModel):
    """AppConfig status subresource"""

    conditions: List[Dict[str, str]]
    last_sync_time: Optional[str]
    last_secret_rotation_time: Optional[str]
    created_resources: List[str]
