import json
import logging.handlers

import pytest

from konverge.engines.loggers import LogFormat, ObjectJsonFormatter, ObjectLogger, \
                                     ObjectPrefixingJsonFormatter, \
                                     ObjectPrefixingTextFormatter, ObjectTextFormatter, \
                                     configure, get_severity, make_formatter
from konverge.structs.references import ObjectKey

REF = {'namespace': 'namespace1', 'name': 'name1', 'controller': 'ctl'}


@pytest.fixture(autouse=True)
def root_logger():
    """ The root logger, restored after every test, since `configure()` changes it. """
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def buffer():
    handler = logging.handlers.BufferingHandler(capacity=100)
    base = logging.getLogger('konverge.test')
    base.addHandler(handler)
    base.setLevel(logging.DEBUG)
    yield handler.buffer
    base.removeHandler(handler)


@pytest.fixture()
def record(buffer):
    logger = ObjectLogger(key=ObjectKey('namespace1', 'name1'), controller='ctl',
                          logger=logging.getLogger('konverge.test'))
    logger.info("hello")
    return buffer[0]


def own_formatters(root):
    return [type(handler.formatter) for handler in root.handlers
            if isinstance(handler.formatter, (ObjectTextFormatter, ObjectJsonFormatter))]


def test_object_logger_carries_the_reference(record):
    assert record.konverge_ref == REF


def test_object_logger_unwraps_the_adapters():
    base = logging.getLogger('konverge.test')
    nested = logging.LoggerAdapter(logging.LoggerAdapter(base, {}), {})
    logger = ObjectLogger(key=ObjectKey('ns', 'name1'), logger=nested)
    assert logger.logger is base


def test_object_logger_merges_the_extras(buffer):
    logger = ObjectLogger(key=ObjectKey('ns', 'name1'), logger=logging.getLogger('konverge.test'))
    logger.warning("hello", extra={'custom': 123})
    assert buffer[0].custom == 123
    assert buffer[0].konverge_ref['name'] == 'name1'


def test_object_logger_defaults_to_the_framework_logger():
    logger = ObjectLogger(key=ObjectKey('ns', 'name1'))
    assert logger.logger.name == 'konverge.objects'
    assert logger.extra['konverge_ref']['controller'] is None


@pytest.mark.parametrize('key, expected', [
    (ObjectKey('namespace1', 'name1'), '[namespace1/name1] hello'),
    (ObjectKey(None, 'name1'), '[name1] hello'),
])
def test_text_prefixes(buffer, key, expected):
    ObjectLogger(key=key, logger=logging.getLogger('konverge.test')).info("hello")
    assert ObjectPrefixingTextFormatter().format(buffer[0]) == expected
    assert ObjectTextFormatter().format(buffer[0]) == 'hello'


def test_text_prefixes_do_not_leak_to_other_handlers(record):
    ObjectPrefixingTextFormatter().format(record)
    assert record.msg == 'hello'


def test_messages_without_objects_are_not_prefixed():
    plain = logging.LogRecord('konverge.test', logging.INFO, __file__, 1, "hello", (), None)
    assert ObjectPrefixingTextFormatter().format(plain) == 'hello'
    assert 'object' not in json.loads(ObjectJsonFormatter().format(plain))


def test_json_fields(record):
    decoded = json.loads(ObjectJsonFormatter().format(record))
    assert decoded['message'] == 'hello'
    assert decoded['object'] == REF
    assert decoded['severity'] == 'info'
    assert 'timestamp' in decoded
    assert 'konverge_ref' not in decoded


def test_json_refkey_and_prefixes(record):
    decoded = json.loads(ObjectPrefixingJsonFormatter(refkey='ref').format(record))
    assert decoded['message'] == '[namespace1/name1] hello'
    assert decoded['ref'] == REF
    assert 'object' not in decoded


@pytest.mark.parametrize('levelno, severity', [
    (logging.DEBUG - 5, 'debug'),
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
    (logging.CRITICAL, 'fatal'),
])
def test_severities(levelno, severity):
    assert get_severity(levelno) == severity


@pytest.mark.parametrize('log_format, log_prefix, expected_cls', [
    (LogFormat.FULL, False, ObjectTextFormatter),
    (LogFormat.PLAIN, False, ObjectTextFormatter),
    ('%(levelname)s %(message)s', False, ObjectTextFormatter),
    (LogFormat.FULL, True, ObjectPrefixingTextFormatter),
    ('%(levelname)s %(message)s', True, ObjectPrefixingTextFormatter),
    (LogFormat.PLAIN, None, ObjectPrefixingTextFormatter),
    (LogFormat.JSON, False, ObjectJsonFormatter),
    (LogFormat.JSON, True, ObjectPrefixingJsonFormatter),
    (LogFormat.JSON, None, ObjectJsonFormatter),
])
def test_formatter_choice(root_logger, log_format, log_prefix, expected_cls):
    assert type(make_formatter(log_format, log_prefix=log_prefix)) is expected_cls
    configure(log_format=log_format, log_prefix=log_prefix)
    assert own_formatters(root_logger) == [expected_cls]


def test_reconfiguration_replaces_the_handler(root_logger):
    configure(log_format=LogFormat.PLAIN)
    configure(log_format=LogFormat.JSON)
    assert own_formatters(root_logger) == [ObjectJsonFormatter]


@pytest.mark.parametrize('flags, expected_level', [
    (dict(debug=True), logging.DEBUG),
    (dict(verbose=True), logging.DEBUG),
    (dict(quiet=True), logging.WARNING),
    (dict(), logging.INFO),
])
def test_levels(root_logger, flags, expected_level):
    configure(**flags)
    assert root_logger.level == expected_level


@pytest.mark.parametrize('debug, propagate', [(True, True), (False, False)])
def test_noisy_loggers(debug, propagate):
    configure(debug=debug)
    assert logging.getLogger('asyncio').propagate is propagate
    logging.getLogger('asyncio').propagate = True
    logging.getLogger('asyncio').handlers[:] = []


def test_unsupported_formats():
    with pytest.raises(ValueError, match=r"Unsupported log format"):
        make_formatter(log_format=123)
