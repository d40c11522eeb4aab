"""
Tests for the writers.
"""
import io
import json
import unittest
from unittest import mock

import requests

from .argus_writer import ArgusWriter
from .base import Writer
from .factory import WriterFactory
from .preview_writer import PreviewWriter
from ..core.config import CollectorConfig
from ..core.exceptions import ConfigurationError, RelayForwardError
from ..schema.models import Annotation, Metric

ENDPOINT = 'https://argus.example.com:8443/argusws'


def make_response(status=200, reason='OK'):
    response = mock.MagicMock()
    response.status_code = status
    response.reason = reason
    response.ok = status < 400
    return response


def sample_metric():
    return Metric('scope', 'metric', tags={'host': 'a'}, datapoints={2000: '2', 1000: '1'})


def sample_annotation():
    return Annotation('splunk', 'id1', 'deploy', 'scope', 'global.annotations', 1000, tags={'host': 'a'})


class TestArgusWriter(unittest.TestCase):
    """Test cases for ArgusWriter with a mocked session."""

    def setUp(self):
        self.session = mock.MagicMock()
        self.session.request.return_value = make_response()
        self.writer = ArgusWriter(ENDPOINT, 'robot', 'secret', session=self.session)

    def test_endpoint_requires_port(self):
        with self.assertRaises(ConfigurationError):
            ArgusWriter('https://argus.example.com/argusws', session=self.session)

    def test_endpoint_must_be_url(self):
        with self.assertRaises(ConfigurationError):
            ArgusWriter('argus:8443', session=self.session)

    def test_login(self):
        self.writer.login()
        self.session.request.assert_called_with(
            'POST', f"{ENDPOINT}/auth/login", json={'username': 'robot', 'password': 'secret'}, timeout=30)
        self.assertTrue(self.writer.logged_in)

    def test_login_rejected(self):
        self.session.request.return_value = make_response(401, 'Unauthorized')
        with self.assertRaises(RelayForwardError) as ctx:
            self.writer.login()
        self.assertEqual(ctx.exception.status_code, 401)

    def test_put_metrics_posts_json(self):
        self.writer.put_metrics([sample_metric()])
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ('POST', f"{ENDPOINT}/collection/metrics"))
        self.assertEqual(kwargs['json'], [{
            'scope': 'scope',
            'metric': 'metric',
            'tags': {'host': 'a'},
            'datapoints': {'1000': '1', '2000': '2'},
        }])

    def test_put_metrics_server_error(self):
        self.session.request.return_value = make_response(500, 'Server Error')
        with self.assertRaises(RelayForwardError) as ctx:
            self.writer.put_metrics([sample_metric()])
        self.assertEqual(ctx.exception.status_code, 500)

    def test_transport_error(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(RelayForwardError):
            self.writer.put_annotations([sample_annotation()])

    def test_put_annotations_posts_json(self):
        self.writer.put_annotations([sample_annotation()])
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ('POST', f"{ENDPOINT}/collection/annotations"))
        self.assertEqual(kwargs['json'][0]['id'], 'id1')

    def test_empty_batches_rejected(self):
        with self.assertRaises(ValueError):
            self.writer.put_metrics([])
        with self.assertRaises(ValueError):
            self.writer.put_annotations([])
        self.session.request.assert_not_called()

    def test_query_metrics(self):
        response = self.writer.query_metrics('-1h:scope:metric:avg')
        self.session.request.assert_called_with(
            'GET', f"{ENDPOINT}/metrics", params={'expression': '-1h:scope:metric:avg'}, timeout=30)
        self.assertIs(response, self.session.request.return_value)

    def test_close_logs_out_when_logged_in(self):
        self.writer.login()
        self.writer.close()
        self.session.request.assert_called_with('GET', f"{ENDPOINT}/auth/logout", timeout=30)
        self.session.close.assert_called_once()

    def test_close_ignores_logout_failure(self):
        self.writer.login()
        self.session.request.return_value = make_response(500, 'Server Error')
        self.writer.close()
        self.session.close.assert_called_once()

    def test_close_without_login(self):
        self.writer.close()
        self.session.request.assert_not_called()
        self.session.close.assert_called_once()


class TestPreviewWriter(unittest.TestCase):
    """Test cases for PreviewWriter."""

    def test_prints_json(self):
        stream = io.StringIO()
        writer = PreviewWriter(stream)
        writer.login()
        writer.put_metrics([sample_metric()])
        writer.put_annotations([sample_annotation()])
        writer.close()

        decoder = json.JSONDecoder()
        text = stream.getvalue()
        metrics, end = decoder.raw_decode(text)
        annotations, _ = decoder.raw_decode(text[end:].lstrip())
        self.assertEqual(metrics[0]['metric'], 'metric')
        self.assertEqual(annotations[0]['type'], 'deploy')
        self.assertEqual(writer.counts, {'metrics': 1, 'annotations': 1})

    def test_no_network(self):
        with mock.patch('requests.Session.request') as request:
            writer = PreviewWriter(io.StringIO())
            writer.put_metrics([sample_metric()])
            writer.close()
        request.assert_not_called()

    def test_query_is_echoed(self):
        stream = io.StringIO()
        with mock.patch('requests.Session.request') as request:
            result = PreviewWriter(stream).query_metrics('-1h:scope:metric:avg')
        self.assertEqual(result, [])
        self.assertEqual(json.loads(stream.getvalue()), {'expression': '-1h:scope:metric:avg'})
        request.assert_not_called()

    def test_empty_query_is_rejected(self):
        with self.assertRaises(ValueError):
            PreviewWriter(io.StringIO()).query_metrics('')


class TestWriterBase(unittest.TestCase):
    """Test cases for the Writer interface."""

    def test_query_metrics_is_required(self):
        class PutOnlyWriter(Writer):
            def put_metrics(self, metrics):
                pass

            def put_annotations(self, annotations):
                pass

        with self.assertRaises(TypeError):
            PutOnlyWriter()


class TestWriterFactory(unittest.TestCase):
    """Test cases for WriterFactory."""

    def test_preview(self):
        config = CollectorConfig(reader_type='UNITTEST', preview=True)
        self.assertIsInstance(WriterFactory.create_writer_from_config(config), PreviewWriter)

    def test_argus(self):
        config = CollectorConfig(reader_type='UNITTEST', argus_endpoint=ENDPOINT,
                                 argus_username='robot', argus_password='secret')
        writer = WriterFactory.create_writer_from_config(config)
        self.assertIsInstance(writer, ArgusWriter)
        self.assertEqual(writer.endpoint, ENDPOINT)
        writer.close()


if __name__ == '__main__':
    unittest.main()
