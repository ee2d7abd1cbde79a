"""
Tests for the KeypayClient class and its request helpers.
"""

import json
import unittest
from unittest.mock import patch, MagicMock, Mock

import requests

from keypay_sheets.keypay_client import (
    KeypayClient,
    KeypayConfigurationError,
    KeypayError,
    KeypayTransportError,
    KeypayUnsupportedEndpointError,
    RetryPolicy,
    UrlType,
    convert_params_to_query,
)

BASE = "https://api.yourpayroll.com.au/api/v2"


def make_response(status_code: int, payload=None, text: str = ""):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


class TestConvertParamsToQuery(unittest.TestCase):

    def test_filter_gets_dollar_prefix_and_order_is_kept(self):
        self.assertEqual(convert_params_to_query({"filter": "x", "top": 1}), "$filter=x&top=1")

    def test_values_are_uri_encoded(self):
        self.assertEqual(convert_params_to_query({"q": "a b"}), "q=a%20b")
        self.assertEqual(
            convert_params_to_query({"filter": "name eq 'Bob'"}),
            "$filter=name%20eq%20'Bob'"
        )

    def test_reserved_characters_are_left_alone(self):
        self.assertEqual(
            convert_params_to_query({"request.fromDate": "2019-05-15T00:00:00"}),
            "request.fromDate=2019-05-15T00:00:00"
        )

    def test_other_keys_are_not_prefixed(self):
        self.assertEqual(
            convert_params_to_query({"$top": 100, "filter.payScheduleId": 5}),
            "$top=100&filter.payScheduleId=5"
        )

    def test_booleans_are_lowercase(self):
        self.assertEqual(convert_params_to_query({"active": True}), "active=true")


class TestRetryPolicy(unittest.TestCase):

    def test_returns_fifth_result_after_four_failures(self):
        fetch = Mock(side_effect=[requests.exceptions.ConnectionError("down")] * 4 + ["fifth"])
        with patch('keypay_sheets.keypay_client.logger'):
            result = RetryPolicy().call(fetch, "http://example.com")
        self.assertEqual(result, "fifth")
        self.assertEqual(fetch.call_count, 5)

    def test_raises_after_exactly_five_attempts(self):
        fetch = Mock(side_effect=requests.exceptions.Timeout("slow"))
        with patch('keypay_sheets.keypay_client.logger'):
            with self.assertRaises(KeypayTransportError) as ctx:
                RetryPolicy().call(fetch, "http://example.com/x")
        self.assertEqual(fetch.call_count, 5)
        self.assertEqual(ctx.exception.attempts, 5)
        self.assertEqual(ctx.exception.url, "http://example.com/x")
        self.assertIn("http://example.com/x", str(ctx.exception))
        self.assertIn("5", str(ctx.exception))

    def test_custom_attempt_count(self):
        fetch = Mock(side_effect=OSError("reset"))
        with patch('keypay_sheets.keypay_client.logger'):
            with self.assertRaises(KeypayTransportError):
                RetryPolicy(max_attempts=2).call(fetch, "u")
        self.assertEqual(fetch.call_count, 2)


class KeypayClientTestCase(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.client = KeypayClient(api_key="abc123", business_id="1234", session=self.session)
        self.logger_patch = patch('keypay_sheets.keypay_client.logger')
        self.mock_logger = self.logger_patch.start()

    def tearDown(self):
        self.logger_patch.stop()

    def called_urls(self):
        return [c[0][1] for c in self.session.request.call_args_list]


class TestRequestBuilding(KeypayClientTestCase):

    def test_build_url_scopes(self):
        self.assertEqual(self.client.build_url(UrlType.BUSINESS, "/payrun"), f"{BASE}/business/1234/payrun")
        self.assertEqual(self.client.build_url(UrlType.NO_ID, ""), f"{BASE}/business/")
        self.assertEqual(self.client.build_url(UrlType.ESS, "42/document"), f"{BASE}/ess/42/document")

    def test_build_url_with_params(self):
        url = self.client.build_url(UrlType.BUSINESS, "/employee/unstructured", {"filter": "x", "top": 1})
        self.assertEqual(url, f"{BASE}/business/1234/employee/unstructured?$filter=x&top=1")

    def test_auth_header_is_basic_base64_of_key(self):
        self.session.request.return_value = make_response(200, [])
        self.client.list_pay_runs()
        headers = self.session.request.call_args[1]['headers']
        self.assertEqual(headers['Authorization'], "Basic YWJjMTIz")
        self.assertEqual(headers['Content-Type'], "application/json")

    def test_missing_api_key_fails_before_network(self):
        client = KeypayClient(business_id="1234", session=self.session)
        with self.assertRaises(KeypayConfigurationError):
            client.list_pay_runs()
        self.session.request.assert_not_called()

    def test_missing_business_id_fails_before_network(self):
        client = KeypayClient(api_key="abc123", session=self.session)
        with self.assertRaises(KeypayConfigurationError):
            client.list_locations()
        with self.assertRaises(KeypayConfigurationError):
            client.create_location({"name": "HQ"})
        self.session.request.assert_not_called()

    def test_no_id_scope_does_not_need_business_id(self):
        client = KeypayClient(api_key="abc123", session=self.session)
        self.session.request.return_value = make_response(200, [{"id": 1}])
        self.assertEqual(client.list_businesses(), [{"id": 1}])
        self.assertEqual(self.called_urls(), [f"{BASE}/business/"])

    def test_setters_update_state(self):
        client = KeypayClient(session=self.session)
        client.set_api_key("k")
        client.set_business_id("99")
        self.assertEqual(client.build_url(UrlType.BUSINESS, ""), f"{BASE}/business/99")


class TestVerbs(KeypayClientTestCase):

    def test_get_200_returns_parsed_json(self):
        self.session.request.return_value = make_response(200, {"a": 1})
        self.assertEqual(self.client.get(UrlType.BUSINESS, "/thing"), {"a": 1})

    def test_get_404_returns_false_without_retry(self):
        self.session.request.return_value = make_response(404)
        self.assertIs(self.client.get(UrlType.BUSINESS, "/thing"), False)
        self.assertEqual(self.session.request.call_count, 1)
        self.mock_logger.warning.assert_any_call(f"Uh oh, {BASE}/business/1234/thing sent response code 404")

    def test_get_500_is_not_retried(self):
        self.session.request.return_value = make_response(500)
        self.assertIs(self.client.get(UrlType.BUSINESS, "/thing"), False)
        self.assertEqual(self.session.request.call_count, 1)

    def test_transport_failures_are_retried_then_succeed(self):
        self.session.request.side_effect = [requests.exceptions.ConnectionError()] * 4 + [make_response(200, [1])]
        self.assertEqual(self.client.get(UrlType.BUSINESS, "/thing"), [1])
        self.assertEqual(self.session.request.call_count, 5)

    def test_transport_failures_exhausted(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError()
        with self.assertRaises(KeypayTransportError):
            self.client.list_pay_runs()
        self.assertEqual(self.session.request.call_count, 5)

    def test_post_201_returns_raw_response(self):
        response = make_response(201)
        self.session.request.return_value = response
        self.assertIs(self.client.create_location({"name": "HQ"}), response)
        method, url = self.session.request.call_args[0]
        self.assertEqual(method, "POST")
        self.assertEqual(url, f"{BASE}/business/1234/location")
        self.assertEqual(json.loads(self.session.request.call_args[1]['data']), {"name": "HQ"})

    def test_post_failure_returns_raw_response_and_logs(self):
        response = make_response(400, text="bad request")
        self.session.request.return_value = response
        self.assertIs(self.client.create_leave_category({"name": "Sick"}), response)
        self.mock_logger.warning.assert_any_call("Content = bad request")

    def test_put_200_returns_raw_response(self):
        response = make_response(200)
        self.session.request.return_value = response
        self.assertIs(self.client.update_location({"id": 7, "name": "HQ"}), response)
        method, url = self.session.request.call_args[0]
        self.assertEqual(method, "PUT")
        self.assertEqual(url, f"{BASE}/business/1234/location/7")

    def test_put_201_is_treated_as_failure_but_still_returned(self):
        response = make_response(201, text="created?")
        self.session.request.return_value = response
        self.assertIs(self.client.update_pay_category({"id": 3}), response)
        self.mock_logger.warning.assert_any_call(f"Uh oh, {BASE}/business/1234/paycategory/3 sent response code 201")

    def test_get_sends_no_body(self):
        self.session.request.return_value = make_response(200, [])
        self.client.list_employees()
        self.assertIsNone(self.session.request.call_args[1]['data'])

    def test_default_transport_is_requests_module(self):
        client = KeypayClient(api_key="abc123", business_id="1234")
        with patch('keypay_sheets.keypay_client.requests.request', return_value=make_response(200, [])) as mock_request:
            self.assertEqual(client.list_pay_runs(), [])
            mock_request.assert_called_once()


class TestPagination(KeypayClientTestCase):

    def page(self, size, start=0):
        return make_response(200, [{"id": start + i} for i in range(size)])

    def test_pages_are_concatenated_until_empty(self):
        self.session.request.side_effect = [
            self.page(1), self.page(100, 1), self.page(100, 101), self.page(37, 201), self.page(0)
        ]
        employees = self.client.list_employees_by_payschedule()
        self.assertEqual(len(employees), 238)
        self.assertEqual(self.session.request.call_count, 5)
        self.assertEqual([e["id"] for e in employees], list(range(238)))
        self.assertEqual(self.called_urls(), [
            f"{BASE}/business/1234/employee/unstructured?$top=1",
            f"{BASE}/business/1234/employee/unstructured?$top=100&$skip=1",
            f"{BASE}/business/1234/employee/unstructured?$top=100&$skip=101",
            f"{BASE}/business/1234/employee/unstructured?$top=100&$skip=201",
            f"{BASE}/business/1234/employee/unstructured?$top=100&$skip=301",
        ])

    def test_pay_schedule_filter_is_sent_on_every_page(self):
        self.session.request.side_effect = [self.page(1), self.page(5), self.page(0)]
        employees = self.client.list_employees_by_payschedule(77)
        self.assertEqual(len(employees), 6)
        for url in self.called_urls():
            self.assertTrue(url.endswith("filter.payScheduleId=77"), url)

    def test_empty_probe_stops_immediately(self):
        self.session.request.return_value = self.page(0)
        self.assertEqual(self.client.list_employees_by_payschedule(), [])
        self.assertEqual(self.session.request.call_count, 1)

    def test_failed_page_stops_without_adding_false(self):
        self.session.request.side_effect = [self.page(1), self.page(100), make_response(500)]
        employees = self.client.list_employees_by_payschedule()
        self.assertEqual(len(employees), 101)
        self.assertNotIn(False, employees)

    def test_transport_failure_mid_pagination_propagates(self):
        self.session.request.side_effect = [self.page(1)] + [requests.exceptions.ConnectionError()] * 5
        with self.assertRaises(KeypayTransportError):
            self.client.list_employees_by_payschedule()


class TestEndpoints(KeypayClientTestCase):

    def setUp(self):
        super().setUp()
        self.session.request.return_value = make_response(200, {"ok": True})

    def assert_get(self, url):
        method, called_url = self.session.request.call_args[0]
        self.assertEqual(method, "GET")
        self.assertEqual(called_url, url)

    def test_simple_get_endpoints(self):
        cases = [
            (lambda: self.client.list_earnings_lines(55), "/business/1234/payrun/55/earningslines"),
            (self.client.list_employees, "/business/1234/employee/details"),
            (self.client.list_business_documents, "/business/1234/document"),
            (lambda: self.client.list_ess_documents(42), "/ess/42/document"),
            (self.client.list_pay_runs, "/business/1234/payrun"),
            (lambda: self.client.get_pay_run(9), "/business/1234/payrun/9"),
            (self.client.list_locations, "/business/1234/location"),
            (self.client.get_business_details, "/business/1234"),
            (self.client.list_pay_rate_templates, "/business/1234/payratetemplate"),
            (self.client.list_pay_categories, "/business/1234/paycategory"),
            (lambda: self.client.get_pay_rates(3), "/business/1234/employee/3/payrate"),
            (self.client.get_pay_schedules, "/business/1234/payschedule"),
            (self.client.list_employment_agreements, "/business/1234/employmentagreement"),
            (lambda: self.client.get_employment_agreement(8), "/business/1234/employmentagreement/8"),
            (self.client.get_leave_categories, "/business/1234/leavecategory"),
        ]
        for call_endpoint, path in cases:
            with self.subTest(path=path):
                self.assertEqual(call_endpoint(), {"ok": True})
                self.assert_get(BASE + path)

    def test_timesheet_report_params(self):
        self.client.get_timesheet_report("2019-05-15T00:00:00", "2019-05-21T00:00:00")
        self.assert_get(
            f"{BASE}/business/1234/report/timesheet?request.status=AnyExceptRejected"
            "&request.fromDate=2019-05-15T00:00:00&request.toDate=2019-05-21T00:00:00"
        )
        self.client.get_timesheet_report("2019-05-15T00:00:00", "2019-05-21T00:00:00", 12)
        self.assertTrue(self.called_urls()[-1].endswith("&request.payScheduleId=12"))

    def test_grant_employee_access_body(self):
        self.session.request.return_value = make_response(201)
        self.client.grant_employee_access(5, "a@b.com", "Ann")
        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ("POST", f"{BASE}/business/1234/employee/5/access"))
        self.assertEqual(json.loads(self.session.request.call_args[1]['data']), {
            "email": "a@b.com", "name": "Ann", "suppressNotificationEmails": True
        })

    def test_pay_rate_template_create_and_update(self):
        self.client.create_pay_rate_template({"name": "Casual"})
        self.assertEqual(self.session.request.call_args[0], ("POST", f"{BASE}/business/1234/payratetemplate"))
        self.client.update_pay_rate_template({"id": 4, "name": "Casual"})
        self.assertEqual(self.session.request.call_args[0], ("PUT", f"{BASE}/business/1234/payratetemplate/4"))

    def test_create_pay_category_is_not_supported(self):
        self.assertTrue(issubclass(KeypayUnsupportedEndpointError, KeypayError))
        with self.assertRaises(KeypayUnsupportedEndpointError):
            self.client.create_pay_category({"name": "Overtime"})
        self.session.request.assert_not_called()


class TestFromProperties(unittest.TestCase):

    def make_properties(self, values):
        properties = Mock()
        properties.get_property.side_effect = values.get
        return properties

    def test_builds_configured_client(self):
        client = KeypayClient.from_properties(self.make_properties({"API_KEY": "k", "BUSINESS_ID": "12"}))
        self.assertEqual(client.api_key, "k")
        self.assertEqual(client.business_id, "12")

    @patch('keypay_sheets.keypay_client.logger')
    def test_missing_api_key(self, mock_logger):
        self.assertIsNone(KeypayClient.from_properties(self.make_properties({"BUSINESS_ID": "12"})))
        mock_logger.error.assert_called_with("Please set your API key first")

    @patch('keypay_sheets.keypay_client.logger')
    def test_missing_business_id(self, mock_logger):
        self.assertIsNone(KeypayClient.from_properties(self.make_properties({"API_KEY": "k"})))
        mock_logger.error.assert_called_with("Please set your Business ID first")


if __name__ == '__main__':
    unittest.main()
