"""
keypay_client.py - Client for the KeyPay (yourpayroll) payroll REST API v2.

The client holds the API key and business id, builds authenticated requests
and exposes one thin method per endpoint. Payloads are passed through as plain
JSON (dicts and lists); nothing about their shape is validated here.

Return conventions (kept deliberately different per verb):
- GET: parsed JSON on a 200 response, False on any other status.
- POST / PUT: the raw requests.Response, whatever the status. Callers inspect
  `status_code` themselves; failures are only logged here.

Example usage:
    from keypay_sheets.keypay_client import KeypayClient

    client = KeypayClient(api_key="abc123", business_id="1234")
    pay_runs = client.list_pay_runs()
"""

import base64
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import quote

import requests

from .config import KEYPAY_CONFIG, DOCUMENT_PROPERTIES_CONFIG

logger = logging.getLogger(__name__)

# Characters JavaScript's encodeURI leaves untouched (besides alphanumerics and -_.~)
_ENCODE_URI_SAFE = ";,/?:@&=+$!*'()#"

JsonPayload = Union[Dict[str, Any], List[Any]]


class KeypayError(Exception):
    """Base class for errors raised by the KeyPay client."""


class KeypayConfigurationError(KeypayError):
    """Raised before any network call when the API key or business id is missing."""


class KeypayTransportError(KeypayError):
    """Raised when a request could not be sent after every allowed attempt."""

    def __init__(self, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(f"API call failed {attempts} times: url = {url}")


class KeypayUnsupportedEndpointError(KeypayError):
    """Raised by endpoint methods the client knowingly does not implement."""


class UrlType(Enum):
    """Which URL prefix a request is built on."""
    BUSINESS = "bus"   # .../business/{business_id}
    NO_ID = "noId"     # .../business/
    ESS = "ess"        # .../ess/


class RetryPolicy:
    """
    Resends a request that raised before a response was received.

    Every failure is retried immediately, with no backoff and no distinction
    between kinds of failure, until `max_attempts` calls have been made.
    A received response (whatever its status code) is never retried.
    """

    def __init__(self, max_attempts: int = KEYPAY_CONFIG["max_attempts"]):
        self.max_attempts = max_attempts

    def call(self, fetch: Callable[[], requests.Response], url: str) -> requests.Response:
        attempts = 0
        last_error = None
        while attempts < self.max_attempts:
            try:
                return fetch()
            except Exception as e:
                attempts += 1
                last_error = e
                logger.warning(f"Attempt failed, {attempts} failures so far: {e}")

        logger.error("Max API attempts reached, giving up")
        raise KeypayTransportError(url, attempts) from last_error


def convert_params_to_query(params: Dict[str, Any]) -> str:
    """
    Serializes query parameters as key=value pairs joined by '&', in insertion order.

    Values are encoded the way JavaScript's encodeURI does it. The parameter named
    `filter` is sent as `$filter`, following the API's OData convention.
    """
    pairs = []
    for key, value in params.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        name = "$" + key if key == "filter" else key
        pairs.append(f"{name}={quote(str(value), safe=_ENCODE_URI_SAFE)}")
    return "&".join(pairs)


class KeypayClient:
    """
    A thin wrapper around the KeyPay REST API.

    Attributes:
        api_key (str | None): The API key, sent Base64-encoded as Basic auth.
        business_id (str | None): Business scope used by most endpoints.
        retry_policy (RetryPolicy): Decides how often a failed send is repeated.
        http: Anything with a requests-style `request(method, url, **kwargs)`;
              the `requests` module itself unless a Session is supplied.
    """

    def __init__(self,
                 api_key: Optional[str] = None,
                 business_id: Optional[str] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None,
                 base_url: str = KEYPAY_CONFIG["base_url"]):
        self.api_key = api_key
        self.business_id = business_id
        self.retry_policy = retry_policy or RetryPolicy()
        self.http = session if session is not None else requests
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_properties(cls, properties, **kwargs) -> Optional["KeypayClient"]:
        """
        Builds a client from the API_KEY and BUSINESS_ID document properties.

        Args:
            properties: A DocumentProperties-like store exposing get_property().
            **kwargs: Passed through to the constructor.

        Returns:
            A configured client, or None if either property has not been set yet.
        """
        api_key = properties.get_property(DOCUMENT_PROPERTIES_CONFIG["api_key_property"])
        if api_key is None:
            logger.error("Please set your API key first")
            return None
        business_id = properties.get_property(DOCUMENT_PROPERTIES_CONFIG["business_id_property"])
        if business_id is None:
            logger.error("Please set your Business ID first")
            return None
        return cls(api_key=api_key, business_id=business_id, **kwargs)

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    def set_business_id(self, business_id: str) -> None:
        self.business_id = business_id

    # --------------------- Request building ------------------------------

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise KeypayConfigurationError("Error, please set the API key before making API call")

    def _auth_headers(self) -> Dict[str, str]:
        self._require_api_key()
        encoded_key = base64.urlsafe_b64encode(self.api_key.encode("utf-8")).decode("ascii")
        return {
            "Authorization": "Basic " + encoded_key,
            "Content-Type": "application/json",
        }

    def build_url(self, url_type: UrlType, api_url: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Joins the scope prefix, the resource path and the serialized query string."""
        if url_type is UrlType.BUSINESS:
            if not self.business_id:
                raise KeypayConfigurationError("Error, please set the business id before making API call")
            url_base = f"{self.base_url}/business/{self.business_id}"
        elif url_type is UrlType.ESS:
            url_base = f"{self.base_url}/ess/"
        elif url_type is UrlType.NO_ID:
            url_base = f"{self.base_url}/business/"
        else:
            raise ValueError(f"Request built with invalid URL type: {url_type}")

        url = url_base + api_url
        if params:
            url = url + "?" + convert_params_to_query(params)
        return url

    def send_request(self, method: str, url: str, body: Optional[JsonPayload] = None) -> requests.Response:
        """
        Sends one logical request through the retry policy.

        Raises:
            KeypayConfigurationError: If no API key is set.
            KeypayTransportError: If every attempt raised before a response arrived.
        """
        headers = self._auth_headers()
        data = json.dumps(body) if body is not None else None
        logger.info(f"Calling {method} {url}")
        return self.retry_policy.call(
            lambda: self.http.request(method, url, headers=headers, data=data),
            url,
        )

    def get(self, url_type: UrlType, api_url: str,
            params: Optional[Dict[str, Any]] = None) -> Union[JsonPayload, bool]:
        """Fetches data from KeyPay. Returns parsed JSON on 200, False otherwise."""
        self._require_api_key()
        url = self.build_url(url_type, api_url, params)
        response = self.send_request("GET", url)
        if response.status_code == 200:
            return response.json()
        logger.warning(f"Uh oh, {url} sent response code {response.status_code}")
        return False

    def post(self, url_type: UrlType, api_url: str, body: JsonPayload,
             params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Posts data to KeyPay. 201 is success; the raw response is returned either way."""
        return self._send_with_body("POST", 201, url_type, api_url, body, params)

    def put(self, url_type: UrlType, api_url: str, body: JsonPayload,
            params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Updates data in KeyPay. 200 is success; the raw response is returned either way."""
        return self._send_with_body("PUT", 200, url_type, api_url, body, params)

    def _send_with_body(self, method: str, success_code: int, url_type: UrlType, api_url: str,
                        body: JsonPayload, params: Optional[Dict[str, Any]]) -> requests.Response:
        self._require_api_key()
        url = self.build_url(url_type, api_url, params)
        response = self.send_request(method, url, body)
        if response.status_code != success_code:
            logger.warning(f"Uh oh, {url} sent response code {response.status_code}")
            logger.warning(f"Content = {response.text}")
        return response

    # --------------------- Endpoints ------------------------------

    def list_earnings_lines(self, payrun_id) -> Union[JsonPayload, bool]:
        """Lists all the earnings lines for a pay run."""
        return self.get(UrlType.BUSINESS, f"/payrun/{payrun_id}/earningslines")

    def list_employees(self) -> Union[JsonPayload, bool]:
        """Returns a list of employees (a subset of the unstructured employee details)."""
        return self.get(UrlType.BUSINESS, "/employee/details")

    def list_employees_by_payschedule(self, pay_schedule_id=None) -> List[Dict[str, Any]]:
        """
        Returns the unstructured data for all employees on a pay schedule (or all employees).

        A one-row probe is made first. If it finds anyone, pages of
        KEYPAY_CONFIG["page_size"] rows are requested from the next offset onwards
        until a page comes back empty (or the request fails).

        Args:
            pay_schedule_id: Optional pay schedule to filter by.

        Returns:
            The concatenated employee records.
        """
        page_size = KEYPAY_CONFIG["page_size"]
        schedule_filter = {} if pay_schedule_id is None else {"filter.payScheduleId": pay_schedule_id}

        probe = self.get(UrlType.BUSINESS, "/employee/unstructured", {"$top": 1, **schedule_filter})
        if not probe:
            return []

        employees = list(probe)
        skip = len(employees)
        while True:
            page = self.get(UrlType.BUSINESS, "/employee/unstructured",
                            {"$top": page_size, "$skip": skip, **schedule_filter})
            if not page:
                break
            employees.extend(page)
            skip += page_size

        logger.info(f"Fetched {len(employees)} employees for pay schedule {pay_schedule_id}")
        return employees

    def list_business_documents(self) -> Union[JsonPayload, bool]:
        """Lists the details for all of the documents in the business."""
        return self.get(UrlType.BUSINESS, "/document")

    def list_ess_documents(self, employee_id) -> Union[JsonPayload, bool]:
        """Lists all documents visible to this employee, including business and employee documents."""
        return self.get(UrlType.ESS, f"{employee_id}/document")

    def list_pay_runs(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/payrun")

    def get_pay_run(self, pay_run_id) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, f"/payrun/{pay_run_id}")

    def grant_employee_access(self, employee_id, email: str, name: str) -> requests.Response:
        """Grants a user access to the employee, without sending notification emails."""
        body = {
            "email": email,
            "name": name,
            "suppressNotificationEmails": True,
        }
        return self.post(UrlType.BUSINESS, f"/employee/{employee_id}/access", body)

    def create_location(self, location_body: Dict[str, Any]) -> requests.Response:
        return self.post(UrlType.BUSINESS, "/location", location_body)

    def update_location(self, location_body: Dict[str, Any]) -> requests.Response:
        return self.put(UrlType.BUSINESS, f"/location/{location_body['id']}", location_body)

    def list_locations(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/location")

    def get_business_details(self) -> Union[JsonPayload, bool]:
        """Retrieves the details of the current business."""
        return self.get(UrlType.BUSINESS, "")

    def list_businesses(self) -> Union[JsonPayload, bool]:
        """Lists all businesses the API key can access. Needs no business id."""
        return self.get(UrlType.NO_ID, "")

    def list_pay_rate_templates(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/payratetemplate")

    def create_pay_rate_template(self, template_body: Dict[str, Any]) -> requests.Response:
        return self.post(UrlType.BUSINESS, "/payratetemplate", template_body)

    def update_pay_rate_template(self, template_body: Dict[str, Any]) -> requests.Response:
        return self.put(UrlType.BUSINESS, f"/payratetemplate/{template_body['id']}", template_body)

    def list_pay_categories(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/paycategory")

    def update_pay_category(self, body: Dict[str, Any]) -> requests.Response:
        return self.put(UrlType.BUSINESS, f"/paycategory/{body['id']}", body)

    def create_pay_category(self, body: Dict[str, Any]) -> requests.Response:
        raise KeypayUnsupportedEndpointError("create_pay_category is not supported; create pay categories in KeyPay directly")

    def get_pay_rates(self, employee_id) -> Union[JsonPayload, bool]:
        """Gets the pay rates for this employee."""
        return self.get(UrlType.BUSINESS, f"/employee/{employee_id}/payrate")

    def get_pay_schedules(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/payschedule")

    def get_timesheet_report(self, from_date: str, to_date: str, pay_schedule_id=None) -> Union[JsonPayload, bool]:
        """
        Generates a timesheet report for every timesheet that was not rejected.

        Args:
            from_date: Start of the period, e.g. "2019-05-15T00:00:00".
            to_date: End of the period, same format.
            pay_schedule_id: Optional pay schedule to restrict the report to.
        """
        params = {
            "request.status": "AnyExceptRejected",
            "request.fromDate": from_date,
            "request.toDate": to_date,
        }
        if pay_schedule_id is not None:
            params["request.payScheduleId"] = pay_schedule_id
        return self.get(UrlType.BUSINESS, "/report/timesheet", params)

    def list_employment_agreements(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/employmentagreement")

    def get_employment_agreement(self, agreement_id) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, f"/employmentagreement/{agreement_id}")

    def create_leave_category(self, body: Dict[str, Any]) -> requests.Response:
        return self.post(UrlType.BUSINESS, "/leavecategory", body)

    def get_leave_categories(self) -> Union[JsonPayload, bool]:
        return self.get(UrlType.BUSINESS, "/leavecategory")
