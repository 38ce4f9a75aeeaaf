"""Router that serves every path with and without a trailing slash."""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """Registers each endpoint under ``/path`` and ``/path/``.

    Only the slash-less path is published in the OpenAPI schema. Stripe and
    schedulers are configured with whichever form the operator typed, so both
    must resolve without a redirect (a redirect would drop a webhook's body).
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register the route under both path forms.

        Args:
            path (str): The path for the endpoint
            include_in_schema (bool): Whether to include the route in the OpenAPI schema
            **kwargs: Additional arguments to pass to the parent api_route method

        Returns:
            Callable[[DecoratedCallable], DecoratedCallable]: The registering decorator.
        """
        path = path.rstrip("/")

        add_path = super().api_route(path, include_in_schema=include_in_schema, **kwargs)
        add_alternate_path = super().api_route(path + "/", include_in_schema=False, **kwargs)

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            add_alternate_path(func)
            return add_path(func)

        return decorator
