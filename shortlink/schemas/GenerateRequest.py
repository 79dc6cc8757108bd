from pydantic import BaseModel, field_validator
from urllib.parse import urlsplit
from typing import Optional, Dict

MAX_URL_LENGTH = 2048


# Request DTOs
class GenerateRequest(BaseModel):
    url: str
    # Parameter template, stored with the link
    params: Optional[Dict[str, str]] = None
    # RFC 3339 timestamp, parsed by the link service
    expire_at: Optional[str] = None

    @field_validator('url')
    def validate_url(cls, v):
        url_str = v.strip()

        # Length check
        if len(url_str) > MAX_URL_LENGTH:
            raise ValueError(f'URL must be at most {MAX_URL_LENGTH} characters')

        # Only allow http/https
        if not (url_str.startswith('http://') or url_str.startswith('https://')):
            raise ValueError('Only HTTP and HTTPS URLs are allowed')

        try:
            netloc = urlsplit(url_str).netloc
        except ValueError:
            raise ValueError('URL could not be parsed')
        if not netloc:
            raise ValueError('URL must include a host')

        return url_str

    @field_validator('params', mode='before')
    def stringify_params(cls, v):
        if v is None:
            return v
        if not isinstance(v, dict):
            raise ValueError('params must be an object')
        return {str(k): str(val) for k, val in v.items()}
