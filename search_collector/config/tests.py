"""
Tests for reader configuration loading and parsing.
"""
import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

from .properties import load_properties, load_reader_properties, parse_overrides, parse_properties, redact
from .reader_config import Parameter, SplunkConfiguration, expand_queries, extract_mapping, split_param_values
from ..core.exceptions import ConfigurationError


def build_config(**overrides):
    props = {
        'host': 'splunk.example.com',
        'username': 'robot',
        'password': 'secret',
        'query': 'search index={0}',
        'scope': '$key.0$',
        'key.0': 'index',
        'metric.querycount': 'querycount',
    }
    props.update(overrides)
    return SplunkConfiguration.from_properties(props)


class TestParseProperties(unittest.TestCase):
    """Test cases for the .properties parser."""

    def test_pairs_and_comments(self):
        text = "# comment\n! also a comment\nhost=localhost\nport: 8089\n\n  worker_count = 5\n"
        props = parse_properties(text)
        self.assertEqual(props, {'host': 'localhost', 'port': '8089', 'worker_count': '5'})

    def test_continuation_lines(self):
        text = "query=search index=main \\\n    | stats count\nscope=s\n"
        props = parse_properties(text)
        self.assertEqual(props['query'], 'search index=main | stats count')
        self.assertEqual(props['scope'], 's')

    def test_value_keeps_later_separators(self):
        props = parse_properties('query=search a=b | eval x="c:d"\n')
        self.assertEqual(props['query'], 'search a=b | eval x="c:d"')

    def test_quoted_param_list(self):
        props = parse_properties('param.0="_audit","_internal"\n')
        self.assertEqual(split_param_values(props['param.0']), ['_audit', '_internal'])

    def test_whitespace_separates_key_and_value(self):
        text = "host splunk.example.com\nport   8089\nscope = a.b\nkey.0 : index\nflag\n"
        props = parse_properties(text)
        self.assertEqual(props, {'host': 'splunk.example.com', 'port': '8089', 'scope': 'a.b',
                                 'key.0': 'index', 'flag': ''})

    def test_escaped_separator_stays_in_key(self):
        props = parse_properties('tag.my\\ site\\:x=1\n')
        self.assertEqual(props, {'tag.my site:x': '1'})

    def test_unicode_escape(self):
        props = parse_properties('tag.site=caf\\u00e9\n')
        self.assertEqual(props['tag.site'], 'café')

    def test_malformed_unicode_escape(self):
        with self.assertRaises(ConfigurationError):
            parse_properties('tag.site=caf\\u00g9\n')
        with self.assertRaises(ConfigurationError):
            parse_properties('tag.site=caf\\u00\n')


class TestLoadProperties(unittest.TestCase):
    """Test cases for file loading and layering."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.temp_path = Path(self.temp_dir.name)

    def tearDown(self):
        self.temp_dir.cleanup()

    def write(self, name, content):
        path = self.temp_path / name
        path.write_text(content, encoding='utf-8')
        return str(path)

    def test_yaml_is_flattened(self):
        path = self.write('splunk.yaml', (
            "host: splunk\n"
            "port: 8089\n"
            "annotation_collection: false\n"
            "metric:\n"
            "  QueryCount: querycount\n"
            "param:\n"
            "  0: [a, b]\n"
        ))
        props = load_properties(path)
        self.assertEqual(props['host'], 'splunk')
        self.assertEqual(props['port'], '8089')
        self.assertEqual(props['annotation_collection'], 'false')
        self.assertEqual(props['metric.QueryCount'], 'querycount')
        self.assertEqual(props['param.0'], '"a","b"')

    def test_first_segment_is_lower_cased(self):
        path = self.write('splunk.properties', "HOST=splunk\nMetric.QueryCount=qc\n")
        props = load_properties(path)
        self.assertEqual(props['host'], 'splunk')
        self.assertEqual(props['metric.QueryCount'], 'qc')

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_properties(str(self.temp_path / 'missing.properties'))

    def test_invalid_yaml(self):
        path = self.write('bad.yaml', "host: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            load_properties(path)

    def test_layers_last_write_wins(self):
        primary = self.write('primary.properties', "host=a\nport=1\nworker_count=2\n")
        override = self.write('override.properties', "port=2\nworker_count=3\n")
        props = load_reader_properties('SPLUNKNATIVE', primary, override, ['worker_count=4'])
        self.assertEqual(props['host'], 'a')
        self.assertEqual(props['port'], '2')
        self.assertEqual(props['worker_count'], '4')

    def test_missing_override_file_is_ignored(self):
        primary = self.write('primary.properties', "host=a\n")
        props = load_reader_properties('SPLUNKNATIVE', primary, str(self.temp_path / 'absent.properties'))
        self.assertEqual(props, {'host': 'a'})

    def test_paths_from_environment(self):
        primary = self.write('primary.properties', "host=env\n")
        with mock.patch.dict(os.environ, {'SPLUNKNATIVE_CONFIGURATION': primary}):
            props = load_reader_properties('splunknative')
        self.assertEqual(props['host'], 'env')

    def test_primary_file_required(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigurationError):
                load_reader_properties('SPLUNKNATIVE')

    def test_override_logging_redacts_password(self):
        primary = self.write('primary.properties', "host=a\n")
        with self.assertLogs('search_collector.config.properties', level='INFO') as logs:
            load_reader_properties('SPLUNKNATIVE', primary, overrides=['password=hunter2'])
        output = '\n'.join(logs.output)
        self.assertNotIn('hunter2', output)
        self.assertIn('***', output)

    def test_bad_override(self):
        with self.assertRaises(ConfigurationError):
            parse_overrides(['no-separator'])

    def test_redact(self):
        self.assertEqual(redact('password', 'x'), '***')
        self.assertEqual(redact('host', 'x'), 'x')


class TestExtractMapping(unittest.TestCase):
    """Test cases for prefix group extraction."""

    def test_only_prefixed_keys_are_returned(self):
        props = {'metric.a': 'A', 'metric.b': 'B', 'tag.x': 'X', 'metrics': 'z', 'host': 'h'}
        self.assertEqual(dict(extract_mapping(props, 'metric')), {'a': 'A', 'b': 'B'})
        self.assertEqual(dict(extract_mapping(props, 'tag')), {'x': 'X'})
        self.assertEqual(dict(extract_mapping(props, 'key')), {})

    def test_suffix_with_dots_is_kept(self):
        props = {'metric.cpu.user': 'cpu_user'}
        self.assertEqual(dict(extract_mapping(props, 'metric')), {'cpu.user': 'cpu_user'})


class TestExpandQueries(unittest.TestCase):
    """Test cases for query template expansion."""

    def test_iterations_in_order(self):
        expanded = expand_queries("q {0} {1}", {0: ['a', 'b'], 1: ['x', 'y']})
        self.assertEqual(list(expanded.items()), [("q a x", ['a', 'x']), ("q b y", ['b', 'y'])])

    def test_no_params_returns_template(self):
        expanded = expand_queries("search index=main", {})
        self.assertEqual(list(expanded.items()), [("search index=main", [])])

    def test_duplicate_texts_collapse(self):
        expanded = expand_queries("q {0}", {0: ['a', 'a'], 1: ['x', 'y']})
        self.assertEqual(len(expanded), 1)

    def test_other_braces_untouched(self):
        expanded = expand_queries('search {0} | eval s="{name}"', {0: ['main']})
        self.assertEqual(list(expanded), ['search main | eval s="{name}"'])


class TestSplunkConfiguration(unittest.TestCase):
    """Test cases for SplunkConfiguration parsing and validation."""

    def test_defaults(self):
        config = SplunkConfiguration.from_properties({'username': 'u', 'password': 'p'})
        self.assertEqual(config.host, 'localhost')
        self.assertEqual(config.port, 8214)
        self.assertEqual(config.timeout_sec, 10000)
        self.assertEqual(config.worker_count, 3)
        self.assertFalse(config.annotation_collection)
        self.assertEqual(config.annotation_metricname, 'global.annotations')
        self.assertEqual(config.annotation_id_field, 'id')
        self.assertEqual(config.timestamp_field, 'time')
        self.assertEqual(config.tls_validation, 'normal')
        self.assertIsNone(config.tls_ca)
        self.assertIsNone(config.skip_bad_rows)

    def test_resolve(self):
        config = build_config(port='8089')
        self.assertEqual(config.resolve(Parameter.PORT), '8089')
        self.assertEqual(config.resolve(Parameter.TIMESTAMP), 'time')

    def test_mappings(self):
        config = build_config(**{'tag.server': 'splunk_server', 'key.1': 'host'})
        self.assertEqual(dict(config.key_mapping), {0: 'index', 1: 'host'})
        self.assertEqual(dict(config.metric_mapping), {'querycount': 'querycount'})
        self.assertEqual(dict(config.tag_mapping), {'server': 'splunk_server'})

    def test_expand_queries(self):
        config = build_config(**{'param.0': '"_audit","_internal"'})
        self.assertEqual(list(config.expand_queries().items()),
                         [('search index=_audit', ['_audit']), ('search index=_internal', ['_internal'])])

    def test_unequal_param_lengths(self):
        with self.assertRaises(ConfigurationError):
            build_config(**{'param.0': '"a","b"', 'param.1': '"x"', 'query': 'q {0} {1}'})

    def test_param_gap(self):
        with self.assertRaises(ConfigurationError):
            build_config(**{'param.0': '"a"', 'param.2': '"b"'})

    def test_non_numeric_key_index(self):
        with self.assertRaises(ConfigurationError):
            build_config(**{'key.first': 'index'})

    def test_reserved_tag_rejected(self):
        with self.assertRaises(ConfigurationError):
            build_config(**{'tag.units': 'u'})

    def test_placeholder_beyond_params(self):
        with self.assertRaises(ConfigurationError):
            build_config(**{'param.0': '"a"', 'query': 'q {0} {1}'})

    def test_invalid_integers(self):
        for key, value in (('port', 'abc'), ('timeout_sec', '0'), ('worker_count', '-1')):
            with self.subTest(key=key):
                with self.assertRaises(ConfigurationError):
                    build_config(**{key: value})

    def test_invalid_tls_mode(self):
        with self.assertRaises(ConfigurationError):
            build_config(tls_validation='sometimes')

    def test_skip_bad_rows(self):
        self.assertTrue(build_config(skip_bad_rows='true').skip_bad_rows)
        self.assertFalse(build_config(skip_bad_rows='False').skip_bad_rows)
        with self.assertRaises(ConfigurationError):
            build_config(skip_bad_rows='maybe')

    def test_password_never_logged(self):
        with self.assertLogs('search_collector.config.reader_config', level='DEBUG') as logs:
            build_config()
        self.assertNotIn('secret', '\n'.join(logs.output))

    def test_configuration_is_immutable(self):
        config = build_config()
        with self.assertRaises(TypeError):
            config.metric_mapping['other'] = 'x'


if __name__ == '__main__':
    unittest.main()
