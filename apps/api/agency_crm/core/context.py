from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

SUPPORTED_LOCALES = ("ar", "en")


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    user_id: str | None
    locale: str
    currency: str


def _negotiate_locale(request: Request, default: str) -> str:
    explicit = request.headers.get("x-locale")
    if explicit and explicit.lower() in SUPPORTED_LOCALES:
        return explicit.lower()
    accept = request.headers.get("accept-language", "")
    for part in accept.split(","):
        tag = part.split(";")[0].strip().lower()[:2]
        if tag in SUPPORTED_LOCALES:
            return tag
    return default


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, default_locale: str = "ar", default_currency: str = "SAR"):  # type: ignore[no-untyped-def]
        super().__init__(app)
        self.default_locale = default_locale
        self.default_currency = default_currency

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            user_id=None,
            locale=_negotiate_locale(request, self.default_locale),
            currency=request.headers.get("x-currency", self.default_currency),
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request.state.context.request_id
        response.headers["content-language"] = request.state.context.locale
        return response
