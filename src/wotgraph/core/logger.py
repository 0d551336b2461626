"""
Structured logging for wotgraph services.

Every log line is an event name followed by ``key=value`` context, for
example ``build_completed run_id=12 nodes=3401``. Setting ``json_output``
switches the same calls to one JSON object per line, which is what log
aggregators in container deployments expect.

[StructuredFormatter][wotgraph.core.logger.StructuredFormatter] is installed
on the root handler by the CLI so that plain ``logging.getLogger(__name__)``
records emitted by the models and utils layers share the same layout.

Examples:
    ```python
    from wotgraph.core.logger import Logger

    logger = Logger("builder")
    logger.info("layer_expanded", depth=1, discovered=240)
    # info builder layer_expanded depth=1 discovered=240
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, ClassVar


_TRUNCATION_MARKER = "...<truncated {} chars>"


def _truncate(value: str, limit: int | None) -> str:
    if limit and len(value) > limit:
        return value[:limit] + _TRUNCATION_MARKER.format(len(value) - limit)
    return value


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Render a mapping as space separated ``key=value`` pairs.

    Values containing whitespace, ``=`` or quotes are wrapped in double
    quotes with backslash escaping, so the output stays parseable by
    ``shlex``-style tokenizers.

    Args:
        kwargs: Pairs to render, in insertion order.
        max_value_length: Per-value character cap, ``None`` disables it.
        prefix: Prepended to non-empty output.

    Returns:
        The rendered pairs, or an empty string when ``kwargs`` is empty.
    """
    if not kwargs:
        return ""

    parts = []
    for key, value in kwargs.items():
        text = _truncate(str(value), max_value_length)
        if not text or any(ch in text for ch in " =\"'"):
            escaped = text.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{key}="{escaped}"')
        else:
            parts.append(f"{key}={text}")
    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """Root-handler formatter producing ``level logger message k=v ...`` lines.

    Context is read from the ``structured_kv`` record attribute set by
    [Logger][wotgraph.core.logger.Logger]; records without it are emitted
    with the bare message.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        context: dict[str, Any] = getattr(record, "structured_kv", {})
        if context:
            line += format_kv_pairs(context)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class Logger:
    """Thin wrapper over ``logging.Logger`` accepting keyword context.

    Examples:
        ```python
        logger = Logger("api")
        logger.warning("auth_rejected", reason="unknown_token")
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
    ) -> None:
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = (
            self._DEFAULT_MAX_VALUE_LENGTH if max_value_length is None else max_value_length
        )

    @property
    def name(self) -> str:
        return self._logger.name

    def _format_json(self, msg: str, level: str, kwargs: dict[str, Any]) -> str:
        payload = {
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
            "level": level,
            "service": self._logger.name,
            "message": msg,
            **kwargs,
        }
        return json.dumps(payload, default=str)

    def _make_extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        if not kwargs:
            return {}
        limit = self._max_value_length
        context: dict[str, Any] = {}
        for key, value in kwargs.items():
            text = str(value)
            context[key] = _truncate(text, limit) if limit and len(text) > limit else value
        return {"structured_kv": context}

    def _log(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if self._json_output:
            name = logging.getLevelName(level).lower()
            self._logger.log(level, self._format_json(msg, name, kwargs), exc_info=exc_info)
        else:
            self._logger.log(level, msg, extra=self._make_extra(kwargs), exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at ERROR level with the active exception's traceback attached."""
        self._log(logging.ERROR, msg, kwargs, exc_info=True)
