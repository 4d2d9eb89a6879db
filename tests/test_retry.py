import unittest
from unittest.mock import patch, Mock

import requests

from storage.retry import perform_request_with_retries, configure_retry, reset_retry_configuration


def _resp(status, body=None, headers=None):
    r = Mock()
    r.status_code = status
    r.headers = headers or {}
    r.content = b'x' if body is not None else b''
    r.text = 'x' if body is not None else ''
    r.json.return_value = body
    return r


class TestRetry(unittest.TestCase):
    def tearDown(self):
        reset_retry_configuration()

    @patch('storage.retry.time.sleep')
    def test_success_first_try(self, sleep):
        with patch('storage.retry.requests.request', return_value=_resp(200, {'a': 1})) as req:
            res = perform_request_with_retries('get', 'http://x', max_retries=3)
        self.assertEqual(res['status'], 200)
        self.assertEqual(res['response'], {'a': 1})
        self.assertEqual(req.call_count, 1)
        sleep.assert_not_called()

    @patch('storage.retry.time.sleep')
    def test_retries_on_429_then_succeeds(self, sleep):
        responses = [_resp(429, {}, {'Retry-After': '0'}), _resp(200, {'ok': True})]
        with patch('storage.retry.requests.request', side_effect=responses) as req:
            res = perform_request_with_retries('get', 'http://x', max_retries=3, backoff_jitter=0)
        self.assertEqual(res['status'], 200)
        self.assertEqual(req.call_count, 2)

    @patch('storage.retry.time.sleep')
    def test_404_is_not_retried(self, sleep):
        with patch('storage.retry.requests.request', return_value=_resp(404, {'message': 'nope'})) as req:
            res = perform_request_with_retries('get', 'http://x', max_retries=3)
        self.assertEqual(res['status'], 404)
        self.assertEqual(req.call_count, 1)

    @patch('storage.retry.time.sleep')
    def test_network_error_exhausts_with_status_zero(self, sleep):
        with patch('storage.retry.requests.request', side_effect=requests.ConnectionError('down')) as req:
            res = perform_request_with_retries('get', 'http://x', max_retries=2, backoff_jitter=0)
        self.assertEqual(res['status'], 0)
        self.assertIn('down', res['error'])
        self.assertEqual(req.call_count, 2)

    @patch('storage.retry.time.sleep')
    def test_runtime_configuration_overrides_argument(self, sleep):
        configure_retry(max_retries=1)
        with patch('storage.retry.requests.request', return_value=_resp(503, {})) as req:
            res = perform_request_with_retries('get', 'http://x', max_retries=5)
        self.assertEqual(res['status'], 503)
        self.assertEqual(req.call_count, 1)

    @patch('storage.retry.time.sleep')
    def test_json_body_is_sent(self, sleep):
        with patch('storage.retry.requests.request', return_value=_resp(200, {})) as req:
            perform_request_with_retries('post', 'http://x', json_body={'k': 'v'}, auth=('', 't'))
        _, kwargs = req.call_args
        self.assertEqual(kwargs['json'], {'k': 'v'})
        self.assertEqual(kwargs['auth'], ('', 't'))
        self.assertEqual(req.call_args[0][0], 'POST')


if __name__ == '__main__':
    unittest.main()
