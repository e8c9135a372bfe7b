from fastapi import Header, HTTPException, Request

from shared.clients.storage.ObjectStorage import validate_owner_id
from shared.models.errors import ValidationError


async def verify_api_key(request: Request, x_api_key: str = Header(...)) -> None:
    """Verify the X-API-Key header against the configured API key.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        x_api_key (str): The value of the X-API-Key header.

    Raises:
        HTTPException: 401 if the key is missing or does not match.
    """
    helper_config = request.app.state.helper_config
    expected_key = helper_config.get_string_val("APP_API_KEY")
    if x_api_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


async def get_owner_id(x_owner_id: str = Header(...)) -> str:
    """Resolve the acting owner from the X-Owner-Id header.

    Raises:
        HTTPException: 400 if the header is blank or contains a path separator,
            ".." or a control character.
    """
    if not x_owner_id.strip():
        raise HTTPException(status_code=400, detail="X-Owner-Id header must not be empty")
    try:
        return validate_owner_id(x_owner_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
