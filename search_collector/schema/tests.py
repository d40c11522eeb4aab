"""
Tests for the metric and annotation entities.
"""
import unittest

from .models import Annotation, Metric


class TestMetric(unittest.TestCase):
    """Test cases for Metric."""

    def test_datapoints_are_sorted(self):
        metric = Metric('scope', 'metric', datapoints={3000: 'c', 1000: 'a', 2000: 'b'})
        self.assertEqual(list(metric.datapoints), [1000, 2000, 3000])

        metric.add_datapoints({1500: 'x'})
        self.assertEqual(list(metric.datapoints), [1000, 1500, 2000, 3000])

    def test_scope_and_metric_required(self):
        with self.assertRaises(ValueError):
            Metric('', 'metric')
        with self.assertRaises(ValueError):
            Metric('scope', '  ')

    def test_reserved_tags_rejected(self):
        metric = Metric('scope', 'metric')
        for name in ('metric', 'displayName', 'units'):
            with self.subTest(name=name):
                with self.assertRaises(ValueError):
                    metric.set_tag(name, 'x')
        with self.assertRaises(ValueError):
            Metric('scope', 'metric', tags={'units': 'ms'})

    def test_to_dict(self):
        metric = Metric('scope', 'metric', tags={'host': 'a'}, datapoints={1000: '1'})
        self.assertEqual(metric.to_dict(), {
            'scope': 'scope',
            'metric': 'metric',
            'tags': {'host': 'a'},
            'datapoints': {'1000': '1'},
        })

        metric.display_name = 'Metric'
        metric.units = 'ms'
        result = metric.to_dict()
        self.assertEqual(result['displayName'], 'Metric')
        self.assertEqual(result['units'], 'ms')


class TestAnnotation(unittest.TestCase):
    """Test cases for Annotation."""

    def test_required_fields(self):
        with self.assertRaises(ValueError):
            Annotation('splunk', '', 'deploy', 'scope', 'metric', 1000)
        with self.assertRaises(ValueError):
            Annotation('splunk', 'id', 'deploy', 'scope', 'metric', None)

    def test_to_dict(self):
        annotation = Annotation('splunk', 'id1', 'deploy', 'scope', 'global.annotations', 1000,
                                tags={'host': 'a'}, fields={'status': 'ok'})
        self.assertEqual(annotation.to_dict(), {
            'source': 'splunk',
            'id': 'id1',
            'type': 'deploy',
            'scope': 'scope',
            'metric': 'global.annotations',
            'timestamp': 1000,
            'tags': {'host': 'a'},
            'fields': {'status': 'ok'},
        })


if __name__ == '__main__':
    unittest.main()
