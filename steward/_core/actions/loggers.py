"""
Per-object logging and the formatting of the log records.

The object loggers carry the reference of the object being processed,
so that the messages about the same object can be found together:
in the text formats, as a ``[namespace/name]`` prefix of the messages;
in the JSON format, as a separate field of the log records.
"""
import copy
import enum
import logging
from collections.abc import Mapping, MutableMapping
from typing import TYPE_CHECKING, Any, TextIO

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from steward._cogs.helpers import typedefs
from steward._cogs.structs import references

logger = logging.getLogger('steward.objects')

# A key for object references in JSON logs, as seen by the log parsers.
DEFAULT_JSON_REFKEY = 'object'


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # not used for formatting, only for detection


class ObjectFormatter(logging.Formatter):
    pass


class ObjectTextFormatter(ObjectFormatter, logging.Formatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    def __init__(
            self,
            *args: Any,
            refkey: str | None = None,
            **kwargs: Any,
    ) -> None:
        reserved_attrs = set(kwargs.pop('reserved_attrs', RESERVED_ATTRS))
        reserved_attrs |= {'k8s_ref'}
        kwargs |= dict(reserved_attrs=reserved_attrs)
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self._refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: dict[str, Any],
            record: logging.LogRecord,
            message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if self._refkey and hasattr(record, 'k8s_ref'):
            log_record[self._refkey] = getattr(record, 'k8s_ref')

        if 'severity' not in log_record:
            log_record['severity'] = (
                "debug" if record.levelno <= logging.DEBUG else
                "info" if record.levelno <= logging.INFO else
                "warn" if record.levelno <= logging.WARNING else
                "error" if record.levelno <= logging.ERROR else
                "fatal")


class ObjectPrefixingMixin(ObjectFormatter):
    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, 'k8s_ref'):
            ref = getattr(record, 'k8s_ref')
            namespace = ref.get('namespace') or ''
            name = ref.get('name') or ''
            prefix = f"[{namespace}/{name}]" if namespace else f"[{name}]"
            record = copy.copy(record)  # shallow
            record.msg = f"{prefix} {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


class ObjectLogger(typedefs.LoggerAdapter):
    """
    A logger/adapter to carry the object identifiers for formatting.

    Constructed for every processing of every object, so it must be cheap.
    The object can be absent (deleted), in which case only its type
    and its key are known.
    """

    def __init__(
            self,
            *,
            gvk: references.GVK,
            key: references.ObjectKey,
            body: Mapping[str, Any] | None = None,
    ) -> None:
        metadata = body.get('metadata', {}) if body is not None else {}
        super().__init__(logger, dict(
            k8s_ref=dict(
                apiVersion=gvk.api_version,
                kind=gvk.kind,
                name=key.name,
                uid=metadata.get('uid'),
                namespace=key.namespace or None,
            ),
        ))

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # Native logging overwrites the message's extra with the adapter's extra.
        # We merge them, so that both message's & adapter's extras are available.
        kwargs["extra"] = (self.extra or {}) | kwargs.get('extra', {})
        return msg, kwargs


# Used to identify and remove our own handlers on re-configuration (e.g. in tests with CLI runs).
if TYPE_CHECKING:
    class _StewardStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _StewardStreamHandler(logging.StreamHandler):
        pass


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    log_level = 'DEBUG' if debug or verbose else 'WARNING' if quiet else 'INFO'
    formatter = make_formatter(log_format=log_format, log_prefix=log_prefix, log_refkey=log_refkey)
    handler = _StewardStreamHandler()
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.handlers[:] = [h for h in logger.handlers if not isinstance(h, _StewardStreamHandler)]
    logger.addHandler(handler)
    logger.setLevel(log_level)

    # Prevent the low-level logging unless in the debug mode. Keep only the controller's messages.
    for name in ['asyncio']:
        logger = logging.getLogger(name)
        logger.propagate = bool(debug)
        if not debug:
            logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> ObjectFormatter:
    log_prefix = log_prefix if log_prefix is not None else bool(log_format is not LogFormat.JSON)
    match log_format:
        case LogFormat.JSON:
            if log_prefix:
                return ObjectPrefixingJsonFormatter(refkey=log_refkey)
            else:
                return ObjectJsonFormatter(refkey=log_refkey)
        case LogFormat():
            if log_prefix:
                return ObjectPrefixingTextFormatter(log_format.value)
            else:
                return ObjectTextFormatter(log_format.value)
        case str():
            if log_prefix:
                return ObjectPrefixingTextFormatter(log_format)
            else:
                return ObjectTextFormatter(log_format)
        case _:
            raise ValueError(f"Unsupported log format: {log_format!r}")
