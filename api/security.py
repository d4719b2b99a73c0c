# api/security.py
from typing import Optional
from fastapi import Header, HTTPException, Request

def check_key(request: Request, x_api_key: Optional[str] = Header(None)) -> None:
    """Raise 401 if an API key is configured and the header doesn't match."""
    api_key = request.app.state.services.settings.api_key
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
