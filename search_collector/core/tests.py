"""
Tests for the relay, run configuration, logging setup and command line.
"""
import argparse
import io
import logging
import os
import queue
import threading
import time
import unittest
from unittest import mock

from .collector import Collector, drain
from .config import CollectorConfig
from .exceptions import CollectorError, ConfigurationError, RelayForwardError, RemoteQueryError
from .logging_config import LoggingConfigurator
from ..datasources.base import CollectionState, DomainReader
from ..main import main
from ..utils.stats import RelayStatistics
from ..writer.base import Writer


class StaticReader(DomainReader):
    """Reader that is done from the start, optionally failing when invoked."""

    datasource = 'STATIC'

    def __init__(self, error=None):
        super().__init__()
        self.state = CollectionState(metrics_done=True, annotations_done=True)
        self.error = error

    def invoke_collection(self, metric_queue, annotation_queue, stop_event=None):
        if self.error is not None:
            raise self.error


class LateReader(DomainReader):
    """Reader that runs until stopped, then queues one last metric."""

    datasource = 'LATE'

    def invoke_collection(self, metric_queue, annotation_queue, stop_event=None):
        stop_event.wait(30)
        metric_queue.put('late')
        self.state.mark_done(metrics=True, annotations=True)


class FailingReader(DomainReader):
    """Reader that queues one metric, then fails without marking itself done."""

    datasource = 'FAILING'

    def invoke_collection(self, metric_queue, annotation_queue, stop_event=None):
        metric_queue.put('partial')
        raise RemoteQueryError("search head went away")


def create_collector(reader, writer=None, timeout_sec=30, statistics=None):
    writer = writer or mock.MagicMock(spec=Writer)
    return Collector(reader, writer, timeout_sec=timeout_sec, poll_interval=0.01,
                     join_timeout=10, statistics=statistics)


def sent(writer_method):
    return [entity for call in writer_method.call_args_list for entity in call.args[0]]


class TestDrain(unittest.TestCase):
    """Test cases for the drain helper."""

    def test_drain_limits_items(self):
        source = queue.Queue()
        for i in range(5):
            source.put(i)
        chunk = []
        self.assertEqual(drain(source, chunk, 3), 3)
        self.assertEqual(chunk, [0, 1, 2])
        self.assertEqual(drain(source, chunk, 3), 2)
        self.assertEqual(drain(source, chunk, 3), 0)


class TestCollector(unittest.TestCase):
    """Test cases for the relay loop."""

    def test_chunks_are_bounded(self):
        metric_queue, annotation_queue = queue.Queue(), queue.Queue()
        for i in range(2500):
            metric_queue.put(i)
        annotation_queue.put('a')

        statistics = RelayStatistics()
        collector = create_collector(StaticReader(), statistics=statistics)
        collector.invoke(metric_queue, annotation_queue)

        writer = collector.writer
        sizes = [len(call.args[0]) for call in writer.put_metrics.call_args_list]
        self.assertEqual(sizes, [1000, 1000, 500])
        self.assertEqual(sent(writer.put_metrics), list(range(2500)))
        self.assertEqual(sent(writer.put_annotations), ['a'])
        writer.login.assert_called_once()
        writer.close.assert_called_once()
        self.assertEqual(statistics.summary()['metrics_forwarded'], 2500)
        self.assertEqual(statistics.summary()['annotations_forwarded'], 1)

    def test_empty_run_sends_nothing(self):
        collector = create_collector(StaticReader())
        collector.invoke()
        collector.writer.put_metrics.assert_not_called()
        collector.writer.put_annotations.assert_not_called()
        collector.writer.close.assert_called_once()

    def test_stop_flushes_queued_entities(self):
        collector = create_collector(LateReader())
        timer = threading.Timer(0.1, collector.stop)
        timer.start()
        try:
            collector.invoke()
        finally:
            timer.cancel()
        self.assertEqual(sent(collector.writer.put_metrics), ['late'])

    def test_deadline_does_not_flush(self):
        collector = create_collector(LateReader(), timeout_sec=0.1)
        collector.invoke()
        collector.writer.put_metrics.assert_not_called()
        collector.writer.close.assert_called_once()

    def test_forward_error_propagates(self):
        metric_queue = queue.Queue()
        metric_queue.put('m')
        writer = mock.MagicMock(spec=Writer)
        writer.put_metrics.side_effect = RelayForwardError("500", status_code=500)
        statistics = RelayStatistics()
        collector = create_collector(StaticReader(), writer=writer, statistics=statistics)

        with self.assertRaises(RelayForwardError):
            collector.invoke(metric_queue, queue.Queue())
        writer.close.assert_called_once()
        self.assertEqual(statistics.summary()['batch_failures'], 1)

    def test_reader_error_is_reraised(self):
        collector = create_collector(StaticReader(error=RemoteQueryError("login refused")))
        with self.assertRaises(RemoteQueryError):
            collector.invoke()
        collector.writer.close.assert_called_once()

    def test_reader_error_ends_relay_before_deadline(self):
        collector = create_collector(FailingReader(), timeout_sec=3600)
        started = time.monotonic()
        with self.assertRaises(RemoteQueryError):
            collector.invoke()
        self.assertLess(time.monotonic() - started, 5)
        self.assertEqual(sent(collector.writer.put_metrics), ['partial'])
        collector.writer.close.assert_called_once()

    def test_unexpected_reader_error_is_wrapped(self):
        collector = create_collector(StaticReader(error=RuntimeError("bug")))
        with self.assertRaises(CollectorError) as ctx:
            collector.invoke()
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_invalid_chunk_size(self):
        with self.assertRaises(ValueError):
            Collector(StaticReader(), mock.MagicMock(spec=Writer), chunk_size=0)


class TestCollectorConfig(unittest.TestCase):
    """Test cases for CollectorConfig."""

    def namespace(self, **kwargs):
        values = {'type': 'splunknative', 'config': None, 'override_config': None, 'property': [],
                  'timeout': 3600, 'preview': False, 'argus_endpoint': None, 'argus_username': None,
                  'argus_password': None, 'prometheus_port': None, 'log_level': 'INFO', 'logfile': None}
        values.update(kwargs)
        return argparse.Namespace(**values)

    def test_from_args_with_environment(self):
        env = {'ARGUSWS_ENDPOINT': 'https://argus:8443/argusws', 'ARGUSWS_USERNAME': 'robot',
               'ARGUSWS_PASSWORD': 'secret'}
        with mock.patch.dict(os.environ, env, clear=True):
            config = CollectorConfig.from_args(self.namespace(property=['port=1']))
        self.assertEqual(config.reader_type, 'SPLUNKNATIVE')
        self.assertEqual(config.argus_endpoint, 'https://argus:8443/argusws')
        self.assertEqual(config.argus_username, 'robot')
        self.assertEqual(config.overrides, ['port=1'])
        self.assertEqual(config.to_dict()['argus_password'], '***')

    def test_flags_win_over_environment(self):
        with mock.patch.dict(os.environ, {'ARGUSWS_ENDPOINT': 'https://env:1/'}, clear=True):
            config = CollectorConfig.from_args(self.namespace(argus_endpoint='https://flag:2/'))
        self.assertEqual(config.argus_endpoint, 'https://flag:2/')

    def test_endpoint_required_unless_preview(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigurationError):
                CollectorConfig.from_args(self.namespace())
            self.assertTrue(CollectorConfig.from_args(self.namespace(preview=True)).preview)

    def test_timeout_must_be_positive(self):
        with self.assertRaises(ConfigurationError):
            CollectorConfig(reader_type='UNITTEST', preview=True, timeout_sec=0)


class TestLoggingConfigurator(unittest.TestCase):
    """Test cases for LoggingConfigurator."""

    def tearDown(self):
        logging.getLogger('urllib3').setLevel(logging.NOTSET)
        logging.getLogger('requests').setLevel(logging.NOTSET)

    @mock.patch('logging.basicConfig')
    def test_http_libraries_quiet_unless_debug(self, basic_config):
        LoggingConfigurator.setup_logging('INFO')
        self.assertEqual(logging.getLogger('urllib3').level, logging.WARNING)
        self.assertEqual(basic_config.call_args.kwargs['level'], logging.INFO)

        LoggingConfigurator.setup_logging('DEBUG')
        self.assertEqual(logging.getLogger('urllib3').level, logging.DEBUG)

    @mock.patch('logging.basicConfig')
    def test_unknown_level_falls_back_to_info(self, basic_config):
        LoggingConfigurator.setup_logging('LOUD')
        self.assertEqual(basic_config.call_args.kwargs['level'], logging.INFO)


@mock.patch('search_collector.main.LoggingConfigurator.setup_logging')
class TestMain(unittest.TestCase):
    """Test cases for the command line entry point."""

    def test_no_type_prints_usage(self, setup_logging):
        with mock.patch('sys.stdout', new_callable=io.StringIO) as stdout:
            main([])
        self.assertIn('Available types: SPLUNKNATIVE', stdout.getvalue())
        self.assertNotIn('UNITTEST', stdout.getvalue())
        setup_logging.assert_not_called()

    def test_unknown_type(self, setup_logging):
        with mock.patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit) as ctx:
                main(['-t', 'NOPE'])
        self.assertEqual(ctx.exception.code, 2)

    def test_preview_run(self, setup_logging):
        with mock.patch('sys.stdout', new_callable=io.StringIO) as stdout:
            main(['-t', 'UNITTEST', '-n', '-s', '30'])
        self.assertIn('"metric": "metric0"', stdout.getvalue())
        self.assertIn('"host": "localhost"', stdout.getvalue())

    def test_missing_configuration_exits(self, setup_logging):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(SystemExit) as ctx:
                main(['-t', 'SPLUNKNATIVE', '-n'])
        self.assertEqual(ctx.exception.code, 1)


if __name__ == '__main__':
    unittest.main()
