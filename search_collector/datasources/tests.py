"""
Tests for the readers: parsers, Splunk service, query workers and readers.
"""
import io
import queue
import threading
import time
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

import requests

from .factory import ReaderFactory, available_readers
from .parsers import AnnotationParser, MetricParser
from .splunk_reader import SplunkReader
from .splunk_service import RowReader, SplunkService
from .unittest_reader import UnitTestReader
from .worker import QueryState, QueryWorker
from ..config.reader_config import SplunkConfiguration
from ..core.config import CollectorConfig
from ..core.exceptions import ConfigurationError, ParseError, RemoteQueryError
from ..schema.models import Annotation, Metric

# 01/02/2024 03:04:05 UTC
TS_TEXT = '01/02/2024 03:04:05'
TS_MS = 1704164645000


def build_config(**overrides):
    props = {
        'host': 'splunk.example.com',
        'username': 'robot',
        'password': 'secret',
        'query': 'search index={0}',
        'scope': '$key.0$',
        'key.0': 'index',
        'metric.querycount': 'querycount',
        'tag.server': 'splunk_server',
        'worker_count': '2',
    }
    props.update(overrides)
    return SplunkConfiguration.from_properties(props)


class ClosingRows:
    """Row source recording whether it was closed."""

    def __init__(self, rows):
        self.rows = rows
        self.closed = False

    def __iter__(self):
        return iter(self.rows)

    def close(self):
        self.closed = True


class FakeService:
    """In-memory stand-in for SplunkService.

    results maps query text to a list of rows or an exception to raise on
    submit. ready_after is the number of polls before a job is ready, None
    for a job that never finishes.
    """

    def __init__(self, results=None, ready_after=0):
        self.results = results or {}
        self.ready_after = ready_after
        self.jobs = {}
        self.polls = {}
        self.terminated = []
        self.closed = False
        self.lock = threading.Lock()

    def submit_query(self, query):
        outcome = self.results.get(query, [])
        if isinstance(outcome, Exception):
            raise outcome
        with self.lock:
            sid = f"sid{len(self.jobs)}"
            self.jobs[sid] = query
            self.polls[sid] = 0
        return sid

    def poll_ready(self, sid):
        self.polls[sid] += 1
        return self.ready_after is not None and self.polls[sid] > self.ready_after

    def run_duration(self, sid):
        return 1.0

    def terminate(self, sid):
        self.terminated.append(sid)
        return sid

    def fetch_results(self, sid):
        return RowReader(self.results.get(self.jobs[sid], []))

    def close(self):
        self.closed = True


def drain(source):
    items = []
    while not source.empty():
        items.append(source.get_nowait())
    return items


class TestMetricParser(unittest.TestCase):
    """Test cases for MetricParser."""

    def setUp(self):
        self.parser = MetricParser(build_config())

    def test_rows_merge_into_one_metric(self):
        rows = ClosingRows([
            {'time': '01/02/2024 03:04:05', 'index': 'main', 'querycount': '1', 'splunk_server': 's1'},
            {'time': '01/02/2024 03:14:05', 'index': 'main', 'querycount': '2', 'splunk_server': 's1'},
        ])
        metrics = self.parser.parse(rows, ['main'])
        self.assertEqual(len(metrics), 1)
        metric = metrics[0]
        self.assertEqual(metric.scope, 'main')
        self.assertEqual(metric.metric, 'querycount')
        self.assertEqual(metric.tags, {'server': 's1'})
        self.assertEqual(metric.datapoints, {TS_MS: '1', TS_MS + 600000: '2'})
        self.assertTrue(rows.closed)

    def test_distinct_tags_give_distinct_metrics(self):
        rows = ClosingRows([
            {'time': TS_TEXT, 'index': 'main', 'querycount': '1', 'splunk_server': 's1'},
            {'time': TS_TEXT, 'index': 'main', 'querycount': '2', 'splunk_server': 's2'},
        ])
        metrics = self.parser.parse(rows, ['main'])
        self.assertEqual(sorted(m.tags['server'] for m in metrics), ['s1', 's2'])

    def test_missing_values_and_tags_are_skipped(self):
        rows = ClosingRows([
            {'time': TS_TEXT, 'index': 'main'},
            {'time': TS_TEXT, 'index': 'other', 'querycount': '3'},
        ])
        metrics = self.parser.parse(rows, ['main'])
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].scope, 'other')
        self.assertEqual(metrics[0].tags, {})

    def test_bad_timestamp_aborts_and_closes(self):
        rows = ClosingRows([
            {'time': TS_TEXT, 'index': 'main', 'querycount': '1'},
            {'time': '2024-01-02T03:04:05', 'index': 'main', 'querycount': '2'},
        ])
        with self.assertRaises(ParseError):
            self.parser.parse(rows, ['main'])
        self.assertTrue(rows.closed)

    def test_missing_timestamp_column(self):
        with self.assertRaises(ParseError):
            self.parser.parse(ClosingRows([{'index': 'main', 'querycount': '1'}]), [])

    def test_skip_bad_rows_override(self):
        parser = MetricParser(build_config(skip_bad_rows='true'))
        rows = ClosingRows([
            {'time': 'garbage', 'index': 'main', 'querycount': '1'},
            {'time': TS_TEXT, 'index': 'main', 'querycount': '2'},
        ])
        metrics = parser.parse(rows, [])
        self.assertEqual(metrics[0].datapoints, {TS_MS: '2'})

    def test_none_reader_gives_empty_result(self):
        self.assertEqual(self.parser.parse(None, []), [])

    def test_parsing_is_repeatable(self):
        rows = [
            {'time': TS_TEXT, 'index': 'main', 'querycount': '1', 'splunk_server': 's1'},
            {'time': TS_TEXT, 'index': 'main', 'querycount': '2', 'splunk_server': 's2'},
            {'time': '01/02/2024 03:14:05', 'index': 'other', 'querycount': '3'},
        ]

        def summarize(metrics):
            return {(m.scope, m.metric, tuple(sorted(m.tags.items())), tuple(sorted(m.datapoints.items())))
                    for m in metrics}

        first = summarize(self.parser.parse(ClosingRows(rows), ['main']))
        second = summarize(self.parser.parse(ClosingRows(rows), ['main']))
        self.assertEqual(len(first), 3)
        self.assertEqual(first, second)


class TestScopeSubstitution(unittest.TestCase):
    """Test cases for $param.N$ and $key.N$ resolution."""

    def test_key_and_param(self):
        parser = MetricParser(build_config(**{'key.0': 'region'}))
        scope = parser.apply_substitutions({'region': 'us-east'}, '$key.0$-$param.1$', ['x', 'y'])
        self.assertEqual(scope, 'us-east-y')

    def test_substitution_is_not_recursive(self):
        parser = MetricParser(build_config(**{'key.0': 'region'}))
        scope = parser.apply_substitutions({'region': '$param.0$'}, 'a.$key.0$', ['x'])
        self.assertEqual(scope, 'a.$param.0$')

    def test_unknown_references_are_kept(self):
        parser = MetricParser(build_config())
        self.assertEqual(parser.apply_substitutions({}, '$param.5$.$key.9$', ['x']), '$param.5$.$key.9$')

    def test_missing_key_column(self):
        parser = MetricParser(build_config())
        with self.assertRaises(ParseError):
            parser.parse_scope({'time': TS_TEXT}, [])

    def test_parse_fields(self):
        fields = MetricParser.parse_fields({'a': '1'}, {'x': 'a', 'y': 'b'})
        self.assertEqual(fields, {'x': '1', 'y': None})


class TestAnnotationParser(unittest.TestCase):
    """Test cases for AnnotationParser."""

    def setUp(self):
        self.config = build_config(annotation_collection='true', annotation_type='deploy',
                                   scope='$param.0$', **{'metric.status': 'status'})

    def test_one_annotation_per_row(self):
        rows = ClosingRows([
            {'time': TS_TEXT, 'id': 'a1', 'status': 'ok', 'splunk_server': 's1', 'querycount': '4'},
            {'time': TS_TEXT, 'id': 'a2'},
        ])
        annotations = AnnotationParser(self.config).parse(rows, ['prod'])
        self.assertEqual(len(annotations), 2)
        first = annotations[0]
        self.assertEqual(first.source, 'splunk')
        self.assertEqual(first.id, 'a1')
        self.assertEqual(first.type, 'deploy')
        self.assertEqual(first.scope, 'prod')
        self.assertEqual(first.metric, 'global.annotations')
        self.assertEqual(first.timestamp, TS_MS)
        self.assertEqual(first.tags, {'server': 's1'})
        self.assertEqual(first.fields, {'status': 'ok', 'querycount': '4'})
        self.assertEqual(annotations[1].fields, {})
        self.assertTrue(rows.closed)

    def test_bad_rows_are_skipped(self):
        rows = ClosingRows([
            {'time': 'yesterday', 'id': 'a1'},
            {'time': TS_TEXT},
            {'time': TS_TEXT, 'id': 'a3'},
        ])
        annotations = AnnotationParser(self.config).parse(rows, ['prod'])
        self.assertEqual([a.id for a in annotations], ['a3'])

    def test_skip_bad_rows_false_aborts(self):
        config = build_config(annotation_collection='true', annotation_type='deploy', skip_bad_rows='false')
        with self.assertRaises(ParseError):
            AnnotationParser(config).parse(ClosingRows([{'time': 'yesterday', 'id': 'a1'}]), [])


class TestRowReader(unittest.TestCase):
    """Test cases for RowReader."""

    def test_empty_cells_are_absent(self):
        reader = RowReader([{'a': '1', 'b': ''}])
        self.assertEqual(list(reader), [{'a': '1'}])

    def test_close_releases_response(self):
        response = mock.MagicMock()
        with RowReader([], response=response) as reader:
            self.assertEqual(list(reader), [])
        response.close.assert_called_once()
        self.assertTrue(reader.closed)

    def test_empty(self):
        self.assertEqual(list(RowReader.empty()), [])


class RawBody(io.BytesIO):
    """Byte stream standing in for the undecoded HTTP body."""


def make_response(json_data=None, body=b'', status=200):
    response = mock.MagicMock()
    response.status_code = status
    response.encoding = 'utf-8'
    response.json.return_value = json_data
    response.raw = RawBody(body)
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Error")
    return response


class TestSplunkService(unittest.TestCase):
    """Test cases for SplunkService with a mocked session."""

    def setUp(self):
        self.session = mock.MagicMock()
        self.session.headers = {}
        self.routes = {
            ('POST', '/services/auth/login'): make_response({'sessionKey': 'KEY'}),
        }
        self.session.request.side_effect = self.route

    def route(self, method, url, **kwargs):
        path = url.split(':8089', 1)[1]
        return self.routes[(method, path)]

    def create(self, **kwargs):
        return SplunkService('robot', 'secret', 'splunk', 8089, session=self.session, **kwargs)

    def test_login_sets_authorization(self):
        service = self.create()
        self.assertEqual(service.session_key, 'KEY')
        self.assertEqual(self.session.headers['Authorization'], 'Splunk KEY')
        self.assertTrue(self.session.verify)

    def test_login_failure(self):
        self.routes[('POST', '/services/auth/login')] = make_response(status=401)
        with self.assertRaises(RemoteQueryError):
            self.create()

    def test_tls_none_disables_verification(self):
        service = self.create(tls_validation='none')
        self.assertFalse(service.session.verify)

    def test_tls_ca_bundle(self):
        service = self.create(tls_ca='/etc/ssl/ca.pem')
        self.assertEqual(service.session.verify, '/etc/ssl/ca.pem')

    def test_job_lifecycle(self):
        self.routes[('POST', '/services/search/jobs')] = make_response({'sid': '123.4'})
        self.routes[('GET', '/services/search/jobs/123.4')] = make_response(
            {'entry': [{'content': {'isDone': True, 'dispatchState': 'DONE', 'runDuration': 2.5}}]})
        self.routes[('GET', '/services/search/jobs/123.4/results')] = make_response(
            body=f'time,index,querycount\r\n{TS_TEXT},main,7\r\n{TS_TEXT},other,\r\n'.encode('utf-8'))

        service = self.create()
        sid = service.submit_query('search index=main')
        self.assertEqual(sid, '123.4')
        self.assertTrue(service.poll_ready(sid))
        self.assertEqual(service.run_duration(sid), 2.5)

        with service.fetch_results(sid) as reader:
            rows = list(reader)
        self.assertEqual(rows, [{'time': TS_TEXT, 'index': 'main', 'querycount': '7'},
                                {'time': TS_TEXT, 'index': 'other'}])

        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs['params'], {'output_mode': 'csv', 'count': 0})
        self.assertTrue(kwargs['stream'])

    def test_quoted_multiline_cell_is_kept(self):
        body = ('time,index,status\r\n'
                f'{TS_TEXT},main,"line one\nline two"\r\n'
                f'{TS_TEXT},other,before\u2028after\r\n').encode('utf-8')
        self.routes[('GET', '/services/search/jobs/9/results')] = make_response(body=body)

        with self.create().fetch_results('9') as reader:
            rows = list(reader)
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]['status'], 'line one\nline two')
        self.assertEqual(rows[1], {'time': TS_TEXT, 'index': 'other', 'status': 'before\u2028after'})

    def test_queued_job_is_not_ready(self):
        self.routes[('GET', '/services/search/jobs/1')] = make_response(
            {'entry': [{'content': {'isDone': False, 'dispatchState': 'QUEUED'}}]})
        self.assertFalse(self.create().poll_ready('1'))

    def test_terminate_failure_is_ignored(self):
        self.routes[('POST', '/services/search/jobs/1/control')] = make_response(status=500)
        self.assertEqual(self.create().terminate('1'), '1')

    def test_close_logs_out(self):
        self.routes[('DELETE', '/services/authentication/httpauth-tokens/KEY')] = make_response()
        service = self.create()
        service.close()
        self.assertIsNone(service.session_key)
        self.session.close.assert_called_once()

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            SplunkService('', 'secret', 'splunk', 8089, session=self.session)


class TestQueryWorker(unittest.TestCase):
    """Test cases for QueryWorker."""

    def setUp(self):
        self.config = build_config()
        self.parser = MetricParser(self.config)
        self.target = queue.Queue()

    def create(self, service, timeout_sec=10, cancel_event=None):
        return QueryWorker(service, self.target, 'search index=main', ['main'], self.parser,
                           timeout_sec, cancel_event=cancel_event, poll_interval=0.01)

    def test_publishes_parsed_metrics(self):
        service = FakeService({'search index=main': [{'time': TS_TEXT, 'index': 'main', 'querycount': '5'}]},
                              ready_after=2)
        worker = self.create(service)
        self.assertTrue(worker())
        self.assertEqual(worker.state, QueryState.SUCCEEDED)
        metrics = drain(self.target)
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].datapoints, {TS_MS: '5'})
        self.assertEqual(service.terminated, [])

    def test_budget_spent_finalizes_job(self):
        service = FakeService({'search index=main': [{'time': TS_TEXT, 'index': 'main', 'querycount': '5'}]},
                              ready_after=None)
        worker = self.create(service, timeout_sec=0.05)
        self.assertTrue(worker())
        self.assertEqual(service.terminated, ['sid0'])
        self.assertTrue(self.target.empty())

    def test_cancel_finalizes_without_waiting(self):
        cancel_event = threading.Event()
        cancel_event.set()
        service = FakeService(ready_after=None)
        worker = self.create(service, timeout_sec=3600, cancel_event=cancel_event)
        start = time.monotonic()
        self.assertTrue(worker())
        self.assertLess(time.monotonic() - start, 5)
        self.assertEqual(service.terminated, ['sid0'])
        self.assertTrue(self.target.empty())

    def test_remote_failure_returns_false(self):
        service = FakeService({'search index=main': RemoteQueryError("boom")})
        worker = self.create(service)
        self.assertFalse(worker())
        self.assertEqual(worker.state, QueryState.FAILED)

    def test_parse_failure_publishes_nothing(self):
        service = FakeService({'search index=main': [
            {'time': TS_TEXT, 'index': 'main', 'querycount': '5'},
            {'time': 'bad', 'index': 'main', 'querycount': '6'},
        ]})
        self.assertFalse(self.create(service)())
        self.assertTrue(self.target.empty())


class TestSplunkReader(unittest.TestCase):
    """Test cases for the Splunk reader."""

    def rows(self, index, value):
        return [{'time': TS_TEXT, 'index': index, 'querycount': value}]

    def test_failed_query_does_not_affect_others(self):
        config = build_config(**{'param.0': '"a","b","c"'})
        service = FakeService({
            'search index=a': self.rows('a', '1'),
            'search index=b': RemoteQueryError("boom"),
            'search index=c': self.rows('c', '3'),
        })
        reader = SplunkReader(config, service_factory=lambda: service, poll_interval=0.01)
        self.assertFalse(reader.is_metric_collection_done())
        self.assertTrue(reader.is_annotation_collection_done())

        metric_queue, annotation_queue = queue.Queue(), queue.Queue()
        reader.invoke_collection(metric_queue, annotation_queue)

        scopes = sorted(m.scope for m in drain(metric_queue))
        self.assertEqual(scopes, ['a', 'c'])
        self.assertTrue(annotation_queue.empty())
        self.assertEqual(reader.summary, {'succeeded': 2, 'failed': 1, 'abandoned': 0})
        self.assertTrue(reader.is_metric_collection_done())
        self.assertTrue(service.closed)

    def test_annotation_mode_fills_annotation_queue(self):
        config = build_config(annotation_collection='true', annotation_type='deploy',
                              **{'param.0': '"a"'})
        service = FakeService({'search index=a': [{'time': TS_TEXT, 'id': 'x1', 'index': 'a'}]})
        reader = SplunkReader(config, service_factory=lambda: service, poll_interval=0.01)
        self.assertTrue(reader.is_metric_collection_done())
        self.assertFalse(reader.is_annotation_collection_done())

        metric_queue, annotation_queue = queue.Queue(), queue.Queue()
        reader.invoke_collection(metric_queue, annotation_queue)

        annotations = drain(annotation_queue)
        self.assertEqual([a.id for a in annotations], ['x1'])
        self.assertIsInstance(annotations[0], Annotation)
        self.assertTrue(metric_queue.empty())
        self.assertTrue(reader.is_annotation_collection_done())

    def test_stop_event_cancels_workers(self):
        config = build_config(**{'param.0': '"a","b"'})
        service = FakeService(ready_after=None)
        reader = SplunkReader(config, service_factory=lambda: service, poll_interval=0.01, shutdown_grace=5)
        stop_event = threading.Event()
        stop_event.set()

        start = time.monotonic()
        reader.invoke_collection(queue.Queue(), queue.Queue(), stop_event)
        self.assertLess(time.monotonic() - start, 10)
        self.assertTrue(reader.is_metric_collection_done())
        self.assertTrue(service.closed)

    def test_login_failure_still_marks_done(self):
        def failing_factory():
            raise RemoteQueryError("login refused")

        reader = SplunkReader(build_config(), service_factory=failing_factory)
        with self.assertRaises(RemoteQueryError):
            reader.invoke_collection(queue.Queue(), queue.Queue())
        self.assertTrue(reader.is_metric_collection_done())

    def test_required_parameters(self):
        for key in ('host', 'username', 'password', 'query'):
            with self.subTest(key=key):
                with self.assertRaises(ConfigurationError):
                    SplunkReader(build_config(**{key: ' '}))

    def test_annotation_type_required_for_annotations(self):
        with self.assertRaises(ConfigurationError):
            SplunkReader(build_config(annotation_collection='true'))

    def test_workers_share_parser_and_service(self):
        config = build_config(**{'param.0': '"a","b"'})
        reader = SplunkReader(config)
        service = FakeService()
        workers = reader.create_workers(service, queue.Queue(), threading.Event())
        self.assertEqual([w.query for w in workers], ['search index=a', 'search index=b'])
        self.assertIs(workers[0].parser, workers[1].parser)
        self.assertIs(workers[0].service, service)


class TestUnitTestReader(unittest.TestCase):
    """Test cases for the synthetic reader."""

    def test_generates_metrics(self):
        reader = UnitTestReader(metric_count=3, interval=0)
        self.assertTrue(reader.is_annotation_collection_done())
        metric_queue = queue.Queue()
        reader.invoke_collection(metric_queue, queue.Queue())

        metrics = drain(metric_queue)
        self.assertEqual(len(metrics), 3)
        for metric in metrics:
            self.assertIsInstance(metric, Metric)
            self.assertEqual(metric.tags, {'host': 'localhost'})
            timestamps = list(metric.datapoints)
            self.assertEqual(len(timestamps), 10)
            self.assertEqual(timestamps[1] - timestamps[0], 60000)
        self.assertTrue(reader.is_metric_collection_done())

    def test_stop_event_ends_early(self):
        stop_event = threading.Event()
        stop_event.set()
        metric_queue = queue.Queue()
        reader = UnitTestReader(metric_count=10, interval=10)
        reader.invoke_collection(metric_queue, queue.Queue(), stop_event)
        self.assertEqual(metric_queue.qsize(), 1)
        self.assertTrue(reader.is_metric_collection_done())


class TestReaderFactory(unittest.TestCase):
    """Test cases for ReaderFactory."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.temp_path = Path(self.temp_dir.name)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_unittest_reader(self):
        config = CollectorConfig(reader_type='UNITTEST', preview=True)
        self.assertIsInstance(ReaderFactory.create_reader(config), UnitTestReader)

    def test_splunk_reader_from_file(self):
        path = self.temp_path / 'splunk.properties'
        path.write_text("username=robot\npassword=secret\nquery=search index=main\nscope=main\n"
                        "metric.count=count\n", encoding='utf-8')
        config = CollectorConfig(reader_type='SPLUNKNATIVE', preview=True, config_path=str(path),
                                 overrides=['worker_count=7'])
        reader = ReaderFactory.create_reader(config)
        self.assertIsInstance(reader, SplunkReader)
        self.assertEqual(reader.config.worker_count, 7)

    def test_unknown_type(self):
        config = CollectorConfig(reader_type='NOPE', preview=True)
        with self.assertRaises(ConfigurationError):
            ReaderFactory.create_reader(config)

    def test_hidden_readers(self):
        self.assertEqual(available_readers(), ['SPLUNKNATIVE'])


if __name__ == '__main__':
    unittest.main()
