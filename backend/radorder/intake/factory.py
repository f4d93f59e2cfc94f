"""
Request kind -> parser lookup used by the views.
"""

from ..exceptions import ValidationError
from .base import BaseRequestParser


def _build_registry() -> dict[str, type[BaseRequestParser]]:
    # parsers imports from this package
    from .parsers import (
        CancelParser,
        FinalizeParser,
        InformationRequestParser,
        OverrideParser,
        StatusUpdateParser,
        ValidationParser,
    )

    return {
        "validate":     ValidationParser,
        "finalize":     FinalizeParser,
        "status":       StatusUpdateParser,
        "request_info": InformationRequestParser,
        "override":     OverrideParser,
        "cancel":       CancelParser,
    }


def get_parser(kind: str, raw_body: bytes | str | dict, **context) -> BaseRequestParser:
    """
    Return an instantiated parser for `kind`.

    Args:
        kind:     request kind, e.g. "validate", "finalize"
        raw_body: request body (bytes, str or already-decoded dict)
        context:  caller identity (user_id, org_id) for structs that carry it

    Raises:
        ValidationError: unknown kind
    """
    registry = _build_registry()
    parser_cls = registry.get(kind)

    if parser_cls is None:
        raise ValidationError(
            message=f"Unknown request kind: {kind!r}.",
            code="UNKNOWN_REQUEST_KIND",
            detail={"known_kinds": list(registry.keys())},
        )

    return parser_cls(raw_body, **context)
