"""
Connector Schemas
Models for the OAuth connect flow
"""
from pydantic import BaseModel


class ConnectStartResponse(BaseModel):
    """
    Response for GET /integrations/{provider}/connect.
    The frontend navigates the browser to auth_url.
    """
    auth_url: str
    provider: str
