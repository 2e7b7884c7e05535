import secrets

from fastapi import Header, HTTPException, Request


async def verify_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
    """Guard every drive and retrieve route with the shared APP_API_KEY.

    A missing header is answered with 401 as well, so callers cannot tell a
    missing key from a wrong one. The comparison runs in constant time.

    Raises:
        HTTPException: 401 if the header is absent or does not match,
            503 if no API key is configured.
    """
    expected_key = request.app.state.helper_config.get_string_val("APP_API_KEY", default="")
    if not expected_key:
        request.app.state.logging.error("APP_API_KEY is empty, refusing request to %s.", request.url.path)
        raise HTTPException(status_code=503, detail="API key not configured")
    if x_api_key is None or not secrets.compare_digest(x_api_key.encode(), expected_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
