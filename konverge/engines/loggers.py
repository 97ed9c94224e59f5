"""
Per-object logging of the reconciliations.

The messages of the controllers about specific objects carry the objects'
references in the log records (as ``konverge_ref``): the namespace, the name,
and the controller which reconciles them. The formatters then either prefix
the messages with the references (for humans), or put them into a separate
field of the JSON records (for the log parsers).

The loggers are passed explicitly down from the manager to the controllers,
and from the controllers to the workers; there is no global state except
for the module-level loggers used as the default.
"""
import copy
import enum
import logging
from typing import TYPE_CHECKING, Any, Dict, MutableMapping, Optional, TextIO, Tuple, Type, Union

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from konverge.structs import references

# The field of the JSON records with the object's reference.
DEFAULT_JSON_REFKEY = 'object'

# The upper bounds of the levels for the JSON records' severities; above all: fatal.
SEVERITIES = [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
]


class LogFormat(enum.Enum):
    """ The predefined log formats; any other ``%``-style format string works too. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # a marker, never used as a format string


class ObjectFormatter(logging.Formatter):
    """ The base of all own formatters, to recognise own handlers. """


class ObjectTextFormatter(ObjectFormatter):
    pass


class ObjectJsonFormatter(ObjectFormatter, JsonFormatter):
    """
    JSON records with the object's reference and the severity as separate fields.
    """

    def __init__(
            self,
            *args: Any,
            refkey: Optional[str] = None,
            **kwargs: Any,
    ) -> None:
        # The reference goes under its own key, not as an unrecognised extra.
        kwargs['reserved_attrs'] = set(kwargs.get('reserved_attrs', RESERVED_ATTRS)) | {'konverge_ref'}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self.refkey = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: Dict[str, Any],
            record: logging.LogRecord,
            message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        ref = getattr(record, 'konverge_ref', None)
        if ref is not None:
            log_record[self.refkey] = ref
        log_record.setdefault('severity', get_severity(record.levelno))


class ObjectPrefixingMixin(ObjectFormatter):
    """
    Prefix the messages about the objects with their keys: ``[ns/name]``.
    """

    def format(self, record: logging.LogRecord) -> str:
        ref = getattr(record, 'konverge_ref', None)
        if ref is not None:
            key = references.ObjectKey(namespace=ref.get('namespace'), name=ref.get('name') or '')
            record = copy.copy(record)  # the record is shared by all handlers
            record.msg = f"[{key}] {record.msg}"
        return super().format(record)


class ObjectPrefixingTextFormatter(ObjectPrefixingMixin, ObjectTextFormatter):
    pass


class ObjectPrefixingJsonFormatter(ObjectPrefixingMixin, ObjectJsonFormatter):
    pass


def get_severity(levelno: int) -> str:
    for upper, severity in SEVERITIES:
        if levelno <= upper:
            return severity
    return 'fatal'


if TYPE_CHECKING:
    _LoggerAdapter = logging.LoggerAdapter[logging.Logger]
else:
    _LoggerAdapter = logging.LoggerAdapter


class ObjectLogger(_LoggerAdapter):
    """
    A logger for one reconciliation of one key by one controller.

    The key and the controller's name are added to every record.
    The adapters passed as the base logger are unwrapped to their loggers,
    so that the references never nest.
    """

    def __init__(
            self,
            *,
            key: references.ObjectKey,
            controller: Optional[str] = None,
            logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        base = logger if logger is not None else logging.getLogger('konverge.objects')
        while isinstance(base, logging.LoggerAdapter):
            base = base.logger
        ref = {'namespace': key.namespace, 'name': key.name, 'controller': controller}
        super().__init__(base, {'konverge_ref': ref})

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> Tuple[str, MutableMapping[str, Any]]:
        # The stdlib adapters replace the call's extras; merge them instead.
        kwargs["extra"] = dict(self.extra or {}, **kwargs.get('extra', {}))
        return msg, kwargs


# Own handlers are replaced on re-configuration: their streams can be already closed,
# e.g. when configured in the tests with the intercepted stderr.
if TYPE_CHECKING:
    class _KonvergeStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _KonvergeStreamHandler(logging.StreamHandler):
        pass


# The 3rd-party loggers silenced unless in the debug mode.
NOISY_LOGGERS = ['asyncio', 'aiohttp.access']


def configure(
        debug: Optional[bool] = None,
        verbose: Optional[bool] = None,
        quiet: Optional[bool] = None,
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> None:
    """
    Set up the root logger for the applications built on the framework.
    """
    if debug or verbose:
        log_level = logging.DEBUG
    elif quiet:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    handler = _KonvergeStreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format, log_prefix=log_prefix,
                                        log_refkey=log_refkey))
    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _KonvergeStreamHandler)]
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.propagate = bool(debug)
        if not debug:
            noisy.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: Union[LogFormat, str] = LogFormat.FULL,
        log_prefix: Optional[bool] = False,
        log_refkey: Optional[str] = None,
) -> ObjectFormatter:
    """
    Pick the formatter for the format; by default, only the texts are prefixed.
    """
    is_json = log_format is LogFormat.JSON
    if log_prefix is None:
        log_prefix = not is_json

    if is_json:
        json_cls: Type[ObjectJsonFormatter]
        json_cls = ObjectPrefixingJsonFormatter if log_prefix else ObjectJsonFormatter
        return json_cls(refkey=log_refkey)

    if isinstance(log_format, LogFormat):
        fmt = log_format.value
    elif isinstance(log_format, str):
        fmt = log_format
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")
    text_cls: Type[ObjectTextFormatter]
    text_cls = ObjectPrefixingTextFormatter if log_prefix else ObjectTextFormatter
    return text_cls(fmt)
